from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core import get_db, get_settings, bearer_matches
from bookworm.services.maintenance import expire_matches, reset_match_quotas

router = APIRouter()
settings = get_settings()


def require_cron_secret(request: Request) -> None:
    if not bearer_matches(request.headers.get("authorization"), settings.cron_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/reset-match-quota", dependencies=[Depends(require_cron_secret)])
async def reset_match_quota(db: Annotated[AsyncSession, Depends(get_db)]):
    return {"reset": await reset_match_quotas(db)}


@router.get("/expire-matches", dependencies=[Depends(require_cron_secret)])
async def expire_pending_matches(db: Annotated[AsyncSession, Depends(get_db)]):
    return {"expired": await expire_matches(db)}

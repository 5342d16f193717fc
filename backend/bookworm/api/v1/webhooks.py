from typing import Annotated
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core import get_db
from bookworm.services.webhooks import WebhookProcessor

router = APIRouter()


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Vendor callbacks. Authenticated by the vendor signature, not a user session."""
    raw_body = await request.body()
    return await WebhookProcessor(db).process(
        provider, request.headers, raw_body, url=str(request.url)
    )

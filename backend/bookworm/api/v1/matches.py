from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core import get_db
from bookworm.models import User
from bookworm.schemas import (
    CandidateListResponse, ConnectionListResponse, ConnectionResponse,
    MatchActionRequest, MatchActionResponse, MatchResponse, ProfileResponse
)
from bookworm.services.matching import MatchEngine
from bookworm.api.v1.auth import get_current_user

router = APIRouter()


@router.get("", response_model=CandidateListResponse)
async def list_candidates(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    engine = MatchEngine(db)
    profiles = await engine.list_candidates(current_user.id)
    remaining = await engine.quota.remaining(current_user)
    return CandidateListResponse(
        profiles=[ProfileResponse.model_validate(p) for p in profiles],
        remaining_today=remaining,
    )


@router.post("", response_model=MatchActionResponse, status_code=status.HTTP_201_CREATED)
async def act_on_candidate(
    data: MatchActionRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    result = await MatchEngine(db).act(
        current_user.id,
        data.receiver_id,
        data.action,
        message=data.message,
        book_context=data.book_context,
    )
    return MatchActionResponse(
        match=MatchResponse.model_validate(result.match),
        is_mutual=result.is_mutual,
    )


@router.get("/connections", response_model=ConnectionListResponse)
async def list_connections(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    connections = await MatchEngine(db).connections(current_user.id)
    return ConnectionListResponse(
        connections=[ConnectionResponse.model_validate(c) for c in connections]
    )

import uuid
from typing import Annotated
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core import get_db
from bookworm.models import CallSession, User
from bookworm.schemas import (
    CallParticipantResponse, CallSessionEnvelope, CallSessionResponse,
    CallStartRequest, CallTokenResponse
)
from bookworm.services.calls import CallSessionManager
from bookworm.api.v1.auth import get_current_user

router = APIRouter()


async def _envelope(manager: CallSessionManager, session: CallSession) -> CallSessionEnvelope:
    participants = await manager.open_participants(session.id)
    return CallSessionEnvelope(
        session=CallSessionResponse(
            id=session.id,
            space_id=session.space_id,
            provider=session.provider,
            provider_room_id=session.provider_room_id,
            status=session.status,
            started_at=session.started_at,
            ended_at=session.ended_at,
            duration_sec=session.duration_sec,
            max_participants=session.max_participants,
            created_at=session.created_at,
            participants=[CallParticipantResponse.model_validate(p) for p in participants],
        )
    )


@router.get("/{space_id}/call", response_model=CallSessionEnvelope)
async def get_call(
    space_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    manager = CallSessionManager(db)
    session = await manager.get(space_id, current_user.id)
    return await _envelope(manager, session)


@router.post("/{space_id}/call", response_model=CallSessionEnvelope, status_code=status.HTTP_201_CREATED)
async def start_call(
    space_id: uuid.UUID,
    response: Response,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    data: CallStartRequest | None = None,
):
    manager = CallSessionManager(db)
    session, created = await manager.start(
        space_id, current_user.id, provider=data.provider if data else None
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return await _envelope(manager, session)


@router.delete("/{space_id}/call", response_model=CallSessionEnvelope)
async def end_call(
    space_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    manager = CallSessionManager(db)
    session = await manager.end(space_id, current_user.id)
    return await _envelope(manager, session)


@router.get("/{space_id}/call/token", response_model=CallTokenResponse)
async def get_call_token(
    space_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    token = await CallSessionManager(db).issue_token(space_id, current_user.id)
    return CallTokenResponse.model_validate(token)

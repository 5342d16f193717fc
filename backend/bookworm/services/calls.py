import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core.config import get_settings
from bookworm.core.errors import Forbidden, NoActiveSession, NotFound
from bookworm.models import (
    CallParticipant, CallProvider, CallSession, CallStatus, ParticipantRole,
    Space, SpaceMember, SpaceRole
)
from bookworm.models.models import as_utc
from bookworm.services.providers import get_provider, parse_provider

settings = get_settings()
logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (CallStatus.WAITING, CallStatus.LIVE)


@dataclass
class CallToken:
    provider: CallProvider
    room_id: str
    token: str
    uid: str
    expires_at: datetime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallSessionManager:
    """
    Lifecycle of the single call session attached to a space.

    NONE -> WAITING on start, WAITING -> LIVE on the first issued join token,
    LIVE/WAITING -> ENDED on an explicit end or a vendor room-ended webhook.
    An ENDED row is replaced when a new call is started in the same space.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _membership(self, space_id: uuid.UUID, user_id: uuid.UUID) -> tuple[Space, SpaceMember]:
        space = await self.db.get(Space, space_id)
        if not space:
            raise NotFound("Space not found")
        member = await self.db.get(SpaceMember, (space_id, user_id))
        if not member:
            raise Forbidden("You are not a member of this space")
        return space, member

    async def _session_for_space(self, space_id: uuid.UUID) -> CallSession | None:
        return await self.db.scalar(
            select(CallSession)
            .where(CallSession.space_id == space_id)
            .execution_options(populate_existing=True)
        )

    async def get(self, space_id: uuid.UUID, user_id: uuid.UUID) -> CallSession:
        await self._membership(space_id, user_id)
        session = await self._session_for_space(space_id)
        if not session:
            raise NotFound("No call session for this space")
        return session

    async def start(
        self,
        space_id: uuid.UUID,
        requester_id: uuid.UUID,
        provider: str | CallProvider | None = None,
    ) -> tuple[CallSession, bool]:
        """Return the running session or open a new one. The flag is True when a room was allocated."""
        await self._membership(space_id, requester_id)

        existing = await self._session_for_space(space_id)
        if existing and existing.status in ACTIVE_STATUSES:
            return existing, False

        adapter = get_provider(parse_provider(provider or settings.voip_provider))
        # Raises before anything is written when the vendor is unavailable.
        room = await adapter.create_room(space_id)

        if existing:
            await self.db.execute(
                delete(CallSession)
                .where(CallSession.id == existing.id)
                .execution_options(synchronize_session=False)
            )
            self.db.expunge(existing)

        session = CallSession(
            space_id=space_id,
            provider=adapter.provider,
            provider_room_id=room.room_id,
            provider_meta=room.meta,
            status=CallStatus.WAITING,
            max_participants=settings.call_max_participants,
        )
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request opened the session first.
            await self.db.rollback()
            winner = await self._session_for_space(space_id)
            if winner is None:
                raise
            return winner, False

        logger.info("Call session %s started in space %s on %s", session.id, space_id, adapter.provider)
        return session, True

    async def issue_token(self, space_id: uuid.UUID, user_id: uuid.UUID) -> CallToken:
        space, _ = await self._membership(space_id, user_id)

        session = await self._session_for_space(space_id)
        if not session or session.status not in ACTIVE_STATUSES:
            raise NoActiveSession()

        is_host = space.owner_id == user_id
        adapter = get_provider(session.provider)
        grant = await adapter.issue_token(session.provider_room_id, user_id, is_host)
        provider_uid = grant.external_uid or str(user_id)
        now = _utc_now()

        # Reconnects reuse the most recent row for this user.
        participant = await self.db.scalar(
            select(CallParticipant)
            .where(CallParticipant.session_id == session.id, CallParticipant.user_id == user_id)
            .order_by(CallParticipant.joined_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        if participant:
            participant.joined_at = now
            participant.left_at = None
            participant.provider_uid = provider_uid
        else:
            self.db.add(
                CallParticipant(
                    session_id=session.id,
                    user_id=user_id,
                    provider_uid=provider_uid,
                    role=ParticipantRole.HOST if is_host else ParticipantRole.LISTENER,
                    joined_at=now,
                )
            )

        await self.db.execute(
            update(CallSession)
            .where(CallSession.id == session.id, CallSession.status == CallStatus.WAITING)
            .values(status=CallStatus.LIVE, started_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        return CallToken(
            provider=parse_provider(session.provider),
            room_id=session.provider_room_id,
            token=grant.token,
            uid=provider_uid,
            expires_at=grant.expires_at,
        )

    async def end(self, space_id: uuid.UUID, requester_id: uuid.UUID) -> CallSession:
        space = await self.db.get(Space, space_id)
        session = await self._session_for_space(space_id) if space else None
        if not session:
            raise NotFound("No active session")

        if space.owner_id != requester_id:
            moderator = await self.db.scalar(
                select(SpaceMember).where(
                    SpaceMember.space_id == space_id,
                    SpaceMember.user_id == requester_id,
                    SpaceMember.role.in_([SpaceRole.OWNER, SpaceRole.MODERATOR]),
                )
            )
            if not moderator:
                raise Forbidden()

        if session.status == CallStatus.ENDED:
            return session

        await self._close(session)
        await self.db.commit()
        logger.info("Call session %s ended by %s after %ss", session.id, requester_id, session.duration_sec)
        return session

    async def end_room(self, provider_room_id: str, occurred_at: datetime | None = None) -> CallSession | None:
        """
        Close the running session for a vendor room. No-op when none is running.

        Room names repeat across calls in a space, so an event stamped before
        the running session was created belongs to an earlier call and is ignored.
        """
        session = await self.db.scalar(
            select(CallSession)
            .where(
                CallSession.provider_room_id == provider_room_id,
                CallSession.status.in_(ACTIVE_STATUSES),
            )
            .execution_options(populate_existing=True)
        )
        if not session:
            logger.info("No running call session for room %s", provider_room_id)
            return None
        if occurred_at and occurred_at < as_utc(session.created_at):
            logger.info("Ignoring room end for %s from before session %s", provider_room_id, session.id)
            return None
        await self._close(session)
        await self.db.commit()
        return session

    async def participant_left(
        self,
        provider_room_id: str,
        provider_uid: str,
        occurred_at: datetime | None = None,
    ) -> int:
        """Close the open participant rows of provider_uid. Returns the number closed."""
        session_ids = select(CallSession.id).where(CallSession.provider_room_id == provider_room_id)
        if occurred_at:
            session_ids = session_ids.where(CallSession.created_at <= occurred_at)
        result = await self.db.execute(
            update(CallParticipant)
            .where(
                CallParticipant.session_id.in_(session_ids),
                CallParticipant.provider_uid == provider_uid,
                CallParticipant.left_at.is_(None),
            )
            .values(left_at=_utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def _close(self, session: CallSession) -> None:
        now = _utc_now()
        session.duration_sec = (
            int((now - as_utc(session.started_at)).total_seconds()) if session.started_at else 0
        )
        session.status = CallStatus.ENDED
        session.ended_at = now
        await self.db.execute(
            update(CallParticipant)
            .where(CallParticipant.session_id == session.id, CallParticipant.left_at.is_(None))
            .values(left_at=now)
            .execution_options(synchronize_session=False)
        )

    async def open_participants(self, session_id: uuid.UUID) -> list[CallParticipant]:
        result = await self.db.execute(
            select(CallParticipant)
            .where(CallParticipant.session_id == session_id, CallParticipant.left_at.is_(None))
            .order_by(CallParticipant.joined_at)
        )
        return list(result.scalars().all())

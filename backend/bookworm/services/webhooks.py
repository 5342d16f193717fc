import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core.config import Settings, get_settings
from bookworm.core.database import insert
from bookworm.core.errors import Unauthorized, ValidationFailed
from bookworm.core.security import bearer_matches
from bookworm.models import WebhookLog, WebhookSource, WebhookStatus
from bookworm.services.calls import CallSessionManager

logger = logging.getLogger(__name__)

ROOM_ENDED_EVENTS = {
    "room-ended",        # Twilio
    "room_finished",     # LiveKit
    "roomfinished",
    "meeting.ended",     # Daily
    "102",               # Agora: channel destroyed
}
PARTICIPANT_LEFT_EVENTS = {
    "participant-disconnected",  # Twilio
    "participant_left",          # LiveKit
    "participant-left",
    "participantdisconnected",
    "participant.left",          # Daily
    "104",                       # Agora: broadcaster left
    "106",                       # Agora: audience left
}


@dataclass
class WebhookEvent:
    external_id: str
    event_type: str
    room_id: str | None = None
    participant_id: str | None = None
    occurred_at: datetime | None = None


def _nested(payload: Mapping[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _from_epoch(value: Any, per_second: int = 1) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value) / per_second, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _from_iso(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_daily(payload: dict) -> WebhookEvent:
    body = payload.get("payload") if isinstance(payload.get("payload"), Mapping) else {}
    room = body.get("room") if isinstance(body.get("room"), str) else _nested(payload, "room", "name")
    return WebhookEvent(
        external_id=_str_or_none(payload.get("id")),
        event_type=_str_or_none(payload.get("type") or payload.get("action")),
        room_id=_str_or_none(room),
        participant_id=_str_or_none(body.get("user_id") or _nested(payload, "participant", "user_id")),
        occurred_at=_from_epoch(payload.get("event_ts")),
    )


def normalize_livekit(payload: dict) -> WebhookEvent:
    event = payload.get("event")
    room = _nested(payload, "room", "name")
    external_id = payload.get("id")
    if not external_id and event:
        external_id = f"{event}-{room}-{payload.get('createdAt', '')}"
    return WebhookEvent(
        external_id=_str_or_none(external_id),
        event_type=_str_or_none(event),
        room_id=_str_or_none(room),
        participant_id=_str_or_none(_nested(payload, "participant", "identity")),
        occurred_at=_from_epoch(payload.get("createdAt")),
    )


def normalize_agora(payload: dict) -> WebhookEvent:
    body = payload.get("payload") if isinstance(payload.get("payload"), Mapping) else payload
    return WebhookEvent(
        external_id=_str_or_none(payload.get("noticeId")),
        event_type=_str_or_none(payload.get("eventType")),
        room_id=_str_or_none(body.get("channelName") or body.get("cname")),
        participant_id=_str_or_none(body.get("uid")),
        occurred_at=_from_epoch(payload.get("notifyMs"), per_second=1000),
    )


def normalize_twilio(payload: dict) -> WebhookEvent:
    event = payload.get("StatusCallbackEvent")
    room_sid = payload.get("RoomSid")
    participant_sid = payload.get("ParticipantSid")
    external_id = f"{event}-{room_sid}" if event and room_sid else None
    if external_id and participant_sid:
        external_id = f"{external_id}-{participant_sid}"
    return WebhookEvent(
        external_id=external_id,
        event_type=_str_or_none(event),
        room_id=_str_or_none(room_sid),
        participant_id=_str_or_none(payload.get("ParticipantIdentity") or participant_sid),
        occurred_at=_from_iso(payload.get("Timestamp")),
    )


NORMALIZERS: dict[WebhookSource, Callable[[dict], WebhookEvent]] = {
    WebhookSource.DAILY: normalize_daily,
    WebhookSource.LIVEKIT: normalize_livekit,
    WebhookSource.AGORA: normalize_agora,
    WebhookSource.TWILIO: normalize_twilio,
}


def twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("utf-8")


class WebhookProcessor:
    """
    Verifies, deduplicates and applies VOIP vendor callbacks.

    Every accepted delivery is acknowledged with {"ok": True}; failures of
    the side effects are recorded on the WebhookLog row instead of being
    surfaced, so vendors do not enter retry storms.
    """

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.calls = CallSessionManager(db)

    async def process(
        self,
        provider_key: str,
        headers: Mapping[str, str],
        raw_body: bytes,
        url: str = "",
    ) -> dict[str, bool]:
        try:
            source = WebhookSource(provider_key.upper())
        except ValueError:
            raise ValidationFailed("Unknown provider")

        headers = {k.lower(): v for k, v in headers.items()}
        if not self.verify(source, headers, raw_body, url):
            logger.warning("Rejected %s webhook with invalid signature", source.value)
            raise Unauthorized("Invalid signature")

        payload = self.parse(source, raw_body)
        event = NORMALIZERS[source](payload)
        if not event.external_id or not event.event_type:
            raise ValidationFailed("Invalid payload")

        existing = await self.db.scalar(
            select(WebhookLog).where(
                WebhookLog.source == source, WebhookLog.external_id == event.external_id
            )
            .execution_options(populate_existing=True)
        )
        if existing and existing.status == WebhookStatus.PROCESSED:
            logger.info("Duplicate %s webhook %s ignored", source.value, event.external_id)
            return {"ok": True, "deduplicated": True}

        stmt = insert(self.db, WebhookLog).values(
            source=source,
            external_id=event.external_id,
            event_type=event.event_type,
            payload=payload,
            status=WebhookStatus.PENDING,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[WebhookLog.source, WebhookLog.external_id],
            set_={"payload": stmt.excluded.payload, "status": WebhookStatus.PENDING},
        )
        await self.db.execute(stmt)
        await self.db.commit()

        log_row = (WebhookLog.source == source) & (WebhookLog.external_id == event.external_id)
        try:
            await self.apply(source, event)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "%s webhook %s (%s) failed", source.value, event.external_id, event.event_type,
                exc_info=True,
            )
            await self.db.execute(
                update(WebhookLog)
                .where(log_row)
                .values(status=WebhookStatus.FAILED, error=str(e)[:2000] or type(e).__name__)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            return {"ok": True}

        await self.db.execute(
            update(WebhookLog)
            .where(log_row)
            .values(
                status=WebhookStatus.PROCESSED,
                processed_at=datetime.now(timezone.utc),
                error=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return {"ok": True}

    def verify(self, source: WebhookSource, headers: Mapping[str, str], raw_body: bytes, url: str) -> bool:
        if source == WebhookSource.DAILY:
            signature = headers.get("x-daily-signature", "")
            secret = self.settings.daily_webhook_secret
            if not signature or not secret:
                return False
            expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
            return hmac.compare_digest(signature.removeprefix("sha256=").lower(), expected)

        if source == WebhookSource.LIVEKIT:
            return bearer_matches(headers.get("authorization"), self.settings.livekit_webhook_secret)

        if source == WebhookSource.AGORA:
            token = headers.get("x-agora-token", "")
            secret = self.settings.agora_webhook_token
            if not token or not secret:
                return False
            return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))

        if source == WebhookSource.TWILIO:
            signature = headers.get("x-twilio-signature", "")
            if not signature:
                return False
            if not self.settings.twilio_validate_signatures:
                return True
            if not self.settings.twilio_auth_token:
                return False
            try:
                params = dict(parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True))
            except UnicodeDecodeError:
                return False
            expected = twilio_signature(self.settings.twilio_auth_token, url, params)
            return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))

        return False

    def parse(self, source: WebhookSource, raw_body: bytes) -> dict:
        try:
            text = raw_body.decode("utf-8")
            if source == WebhookSource.TWILIO:
                return dict(parse_qsl(text, keep_blank_values=True))
            payload = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationFailed("Invalid payload")
        if not isinstance(payload, dict):
            raise ValidationFailed("Invalid payload")
        return payload

    async def apply(self, source: WebhookSource, event: WebhookEvent) -> None:
        event_type = event.event_type.lower()
        if event_type in ROOM_ENDED_EVENTS:
            if event.room_id:
                await self.calls.end_room(event.room_id, occurred_at=event.occurred_at)
        elif event_type in PARTICIPANT_LEFT_EVENTS:
            if event.room_id and event.participant_id:
                await self.calls.participant_left(
                    event.room_id, event.participant_id, occurred_at=event.occurred_at
                )
        else:
            logger.info("Unhandled %s webhook event %s", source.value, event.event_type)

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from bookworm.core.config import Settings, get_settings
from bookworm.core.errors import ProviderNotConfigured, ProviderUnavailable
from bookworm.models import CallProvider

logger = logging.getLogger(__name__)


@dataclass
class RoomAllocation:
    room_id: str
    meta: dict[str, Any] | None = None


@dataclass
class ProviderToken:
    token: str
    expires_at: datetime
    external_uid: str | None = None


class VoipProvider(ABC):
    """Room and join-token primitives of one VOIP vendor."""

    provider: CallProvider
    label: str

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    @abstractmethod
    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        pass

    @abstractmethod
    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        pass

    def room_name(self, space_id: uuid.UUID) -> str:
        return f"{self.settings.call_room_prefix}-{space_id}"

    def token_expiry(self) -> datetime:
        return datetime.now(timezone.utc).replace(microsecond=0) + timedelta(
            seconds=self.settings.call_token_ttl_seconds
        )

    def require(self, **values: str | None) -> None:
        missing = [name.upper() for name, value in values.items() if not value]
        if missing:
            raise ProviderNotConfigured(f"{self.label} is not configured: set {', '.join(missing)}")

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue a vendor request bounded by the configured timeout."""
        try:
            async with httpx.AsyncClient(timeout=self.settings.voip_http_timeout_seconds) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s request to %s failed", self.label, url, exc_info=True)
            raise ProviderUnavailable(f"{self.label} request failed") from e

    def fail(self, action: str, response: httpx.Response) -> ProviderUnavailable:
        logger.error(
            "%s %s failed with status %s: %s",
            self.label, action, response.status_code, response.text[:500],
        )
        return ProviderUnavailable(f"{self.label} {action} failed", vendor_status=response.status_code)

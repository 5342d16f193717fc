import uuid
import zlib
from agora_token_builder.RtcTokenBuilder import RtcTokenBuilder
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider

# RTC roles understood by the token builder
ROLE_PUBLISHER = 1
ROLE_SUBSCRIBER = 2


def agora_uid(user_id: uuid.UUID) -> int:
    """Stable positive 31-bit uid for a user; Agora reserves 0."""
    return (zlib.crc32(str(user_id).encode("utf-8")) & 0x7FFFFFFF) or 1


class AgoraProvider(VoipProvider):
    """Agora channels are ephemeral; the channel name is the room id."""

    provider = CallProvider.AGORA
    label = "Agora"

    def _credentials(self) -> tuple[str, str]:
        self.require(
            agora_app_id=self.settings.agora_app_id,
            agora_app_certificate=self.settings.agora_app_certificate,
        )
        return self.settings.agora_app_id, self.settings.agora_app_certificate

    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        app_id, _ = self._credentials()
        return RoomAllocation(room_id=self.room_name(space_id), meta={"app_id": app_id})

    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        app_id, certificate = self._credentials()
        expires_at = self.token_expiry()
        uid = agora_uid(user_id)
        token = RtcTokenBuilder.buildTokenWithUid(
            app_id,
            certificate,
            room_id,
            uid,
            ROLE_PUBLISHER if is_host else ROLE_SUBSCRIBER,
            int(expires_at.timestamp()),
        )
        return ProviderToken(token=token, expires_at=expires_at, external_uid=str(uid))

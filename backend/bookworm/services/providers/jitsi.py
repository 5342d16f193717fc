import uuid
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider


class JitsiProvider(VoipProvider):
    """Named rooms on a public Jitsi deployment; the room name doubles as join token."""

    provider = CallProvider.JITSI
    label = "Jitsi"

    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        name = self.room_name(space_id)
        return RoomAllocation(room_id=name, meta={"url": f"https://{self.settings.jitsi_domain}/{name}"})

    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        return ProviderToken(token=room_id, expires_at=self.token_expiry(), external_uid=str(user_id))

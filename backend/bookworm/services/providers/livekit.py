import uuid
from datetime import datetime, timezone
import jwt
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider


class LiveKitProvider(VoipProvider):
    """LiveKit creates rooms on first join; access tokens are HS256 JWTs with a video grant."""

    provider = CallProvider.LIVEKIT
    label = "LiveKit"

    def _credentials(self) -> tuple[str, str]:
        self.require(
            livekit_api_key=self.settings.livekit_api_key,
            livekit_api_secret=self.settings.livekit_api_secret,
        )
        return self.settings.livekit_api_key, self.settings.livekit_api_secret

    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        self._credentials()
        return RoomAllocation(room_id=self.room_name(space_id))

    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        api_key, api_secret = self._credentials()
        expires_at = self.token_expiry()
        identity = str(user_id)
        claims = {
            "iss": api_key,
            "sub": identity,
            "nbf": int(datetime.now(timezone.utc).timestamp()),
            "exp": int(expires_at.timestamp()),
            "video": {
                "room": room_id,
                "roomJoin": True,
                "canPublish": True,
                "canSubscribe": True,
                "canPublishData": True,
                "roomAdmin": is_host,
            },
        }
        token = jwt.encode(claims, api_secret, algorithm="HS256")
        return ProviderToken(token=token, expires_at=expires_at, external_uid=identity)

import time
import uuid
import jwt
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider

ROOM_EXISTS_CODE = 53113


class TwilioProvider(VoipProvider):
    """Twilio Video group rooms; join tokens are access JWTs with a video grant."""

    provider = CallProvider.TWILIO
    label = "Twilio"

    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        self.require(
            twilio_account_sid=self.settings.twilio_account_sid,
            twilio_auth_token=self.settings.twilio_auth_token,
        )
        auth = (self.settings.twilio_account_sid, self.settings.twilio_auth_token)
        name = self.room_name(space_id)
        base_url = self.settings.twilio_video_url.rstrip("/")

        resp = await self.send(
            "POST",
            f"{base_url}/Rooms",
            auth=auth,
            data={
                "UniqueName": name,
                "Type": "group",
                "MaxParticipants": str(self.settings.call_max_participants),
            },
        )
        if resp.status_code == 400 and _error_code(resp) == ROOM_EXISTS_CODE:
            resp = await self.send("GET", f"{base_url}/Rooms/{name}", auth=auth)
        if resp.status_code >= 300:
            raise self.fail("room creation", resp)
        return RoomAllocation(room_id=resp.json()["sid"])

    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        self.require(
            twilio_account_sid=self.settings.twilio_account_sid,
            twilio_api_key=self.settings.twilio_api_key,
            twilio_api_secret=self.settings.twilio_api_secret,
        )
        api_key = self.settings.twilio_api_key
        expires_at = self.token_expiry()
        now = int(time.time())
        identity = str(user_id)
        claims = {
            "jti": f"{api_key}-{now}",
            "iss": api_key,
            "sub": self.settings.twilio_account_sid,
            "nbf": now,
            "exp": int(expires_at.timestamp()),
            "grants": {"identity": identity, "video": {"room": room_id}},
        }
        token = jwt.encode(
            claims,
            self.settings.twilio_api_secret,
            algorithm="HS256",
            headers={"cty": "twilio-fpa;v=1"},
        )
        return ProviderToken(token=token, expires_at=expires_at, external_uid=identity)


def _error_code(resp) -> int | None:
    try:
        return resp.json().get("code")
    except ValueError:
        return None

import uuid
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider


class DailyProvider(VoipProvider):
    """Daily.co rooms are created up front through the REST API."""

    provider = CallProvider.DAILY
    label = "Daily.co"

    def _headers(self) -> dict[str, str]:
        self.require(daily_api_key=self.settings.daily_api_key)
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.daily_api_key}",
        }

    async def create_room(self, space_id: uuid.UUID) -> RoomAllocation:
        headers = self._headers()
        name = self.room_name(space_id)
        base_url = self.settings.daily_api_url.rstrip("/")

        resp = await self.send(
            "POST",
            f"{base_url}/rooms",
            headers=headers,
            json={
                "name": name,
                "privacy": "private",
                "properties": {
                    "max_participants": self.settings.call_max_participants,
                    "enable_chat": True,
                },
            },
        )
        # The room outlives ended sessions, so a restart finds it already there.
        if resp.status_code == 400 and "already exists" in resp.text:
            resp = await self.send("GET", f"{base_url}/rooms/{name}", headers=headers)
        if resp.status_code >= 300:
            raise self.fail("room creation", resp)

        data = resp.json()
        return RoomAllocation(room_id=data["name"], meta={"url": data.get("url")})

    async def issue_token(self, room_id: str, user_id: uuid.UUID, is_host: bool) -> ProviderToken:
        headers = self._headers()
        expires_at = self.token_expiry()
        resp = await self.send(
            "POST",
            f"{self.settings.daily_api_url.rstrip('/')}/meeting-tokens",
            headers=headers,
            json={
                "properties": {
                    "room_name": room_id,
                    "user_id": str(user_id),
                    "is_owner": is_host,
                    "exp": int(expires_at.timestamp()),
                    "enable_screenshare": is_host,
                }
            },
        )
        if resp.status_code >= 300:
            raise self.fail("token request", resp)
        return ProviderToken(token=resp.json()["token"], expires_at=expires_at, external_uid=str(user_id))

from bookworm.core.config import Settings
from bookworm.core.errors import ValidationFailed
from bookworm.models import CallProvider
from bookworm.services.providers.base import ProviderToken, RoomAllocation, VoipProvider
from bookworm.services.providers.daily import DailyProvider
from bookworm.services.providers.livekit import LiveKitProvider
from bookworm.services.providers.agora import AgoraProvider
from bookworm.services.providers.twilio import TwilioProvider
from bookworm.services.providers.jitsi import JitsiProvider

PROVIDERS: dict[CallProvider, type[VoipProvider]] = {
    CallProvider.DAILY: DailyProvider,
    CallProvider.LIVEKIT: LiveKitProvider,
    CallProvider.AGORA: AgoraProvider,
    CallProvider.TWILIO: TwilioProvider,
    CallProvider.JITSI: JitsiProvider,
}


def parse_provider(value: str | CallProvider) -> CallProvider:
    if isinstance(value, CallProvider):
        return value
    try:
        return CallProvider(value.upper())
    except ValueError:
        raise ValidationFailed(f"Unknown call provider: {value}")


def get_provider(provider: str | CallProvider, settings: Settings | None = None) -> VoipProvider:
    """Adapter for the provider stored on a call session."""
    return PROVIDERS[parse_provider(provider)](settings)


__all__ = [
    "PROVIDERS",
    "ProviderToken",
    "RoomAllocation",
    "VoipProvider",
    "get_provider",
    "parse_provider",
]

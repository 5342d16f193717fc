from bookworm.services.quota import QuotaTracker
from bookworm.services.matching import MatchEngine
from bookworm.services.calls import CallSessionManager
from bookworm.services.webhooks import WebhookProcessor
from bookworm.services.maintenance import reset_match_quotas, expire_matches

__all__ = [
    "QuotaTracker",
    "MatchEngine",
    "CallSessionManager",
    "WebhookProcessor",
    "reset_match_quotas",
    "expire_matches",
]

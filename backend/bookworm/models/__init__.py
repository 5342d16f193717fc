from bookworm.models.models import (
    User, UserFavorite, Book, UserBook, Match, MatchQuota, Notification,
    Space, SpaceMember, CallSession, CallParticipant, WebhookLog,
    Tier, FavoriteKind, ReadingStatus, MatchStatus, NotificationType, SpaceRole,
    CallProvider, CallStatus, ParticipantRole, WebhookSource, WebhookStatus
)

__all__ = [
    "User", "UserFavorite", "Book", "UserBook", "Match", "MatchQuota", "Notification",
    "Space", "SpaceMember", "CallSession", "CallParticipant", "WebhookLog",
    "Tier", "FavoriteKind", "ReadingStatus", "MatchStatus", "NotificationType", "SpaceRole",
    "CallProvider", "CallStatus", "ParticipantRole", "WebhookSource", "WebhookStatus"
]

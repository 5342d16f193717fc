import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.models import Notification, NotificationType

_TEMPLATES = {
    NotificationType.MATCH_REQUEST: (
        "New reader match",
        "Someone wants to connect with you over a book.",
    ),
    NotificationType.MATCH_ACCEPTED: (
        "It's a match!",
        "You and another reader share a book in common.",
    ),
}


def notify(db: AsyncSession, user_ids: list[uuid.UUID], notification_type: NotificationType) -> None:
    """Queue one notification per recipient on the session. Does not commit."""
    title, body = _TEMPLATES[notification_type]
    for user_id in user_ids:
        db.add(Notification(user_id=user_id, type=notification_type, title=title, body=body))

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from sqlalchemy import (
    String, Text, Boolean, Integer, SmallInteger, DateTime, Date, ForeignKey,
    UniqueConstraint, Index, JSON, CheckConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from bookworm.core.database import Base


class Tier(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"


class FavoriteKind(str, Enum):
    GENRE = "GENRE"
    AUTHOR = "AUTHOR"


class ReadingStatus(str, Enum):
    WANT_TO_READ = "WANT_TO_READ"
    READING = "READING"
    FINISHED = "FINISHED"


class MatchStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class NotificationType(str, Enum):
    MATCH_REQUEST = "MATCH_REQUEST"
    MATCH_ACCEPTED = "MATCH_ACCEPTED"


class SpaceRole(str, Enum):
    OWNER = "OWNER"
    MODERATOR = "MODERATOR"
    MEMBER = "MEMBER"


class CallProvider(str, Enum):
    DAILY = "DAILY"
    LIVEKIT = "LIVEKIT"
    AGORA = "AGORA"
    TWILIO = "TWILIO"
    JITSI = "JITSI"


class CallStatus(str, Enum):
    WAITING = "WAITING"
    LIVE = "LIVE"
    ENDED = "ENDED"


class ParticipantRole(str, Enum):
    HOST = "HOST"
    LISTENER = "LISTENER"


class WebhookSource(str, Enum):
    DAILY = "DAILY"
    LIVEKIT = "LIVEKIT"
    AGORA = "AGORA"
    TWILIO = "TWILIO"


class WebhookStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from backends that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    image: Mapped[str | None] = mapped_column(String(1000))
    bio: Mapped[str | None] = mapped_column(Text)
    tier: Mapped[Tier] = mapped_column(String(20), default=Tier.FREE)
    tier_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    books_read_this_year: Mapped[int] = mapped_column(SmallInteger, default=0)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    favorites: Mapped[list["UserFavorite"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    user_books: Mapped[list["UserBook"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    match_quota: Mapped["MatchQuota"] = relationship(
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def favorite_genres(self) -> list[str]:
        return [f.value for f in self.favorites if f.kind == FavoriteKind.GENRE]

    @property
    def favorite_authors(self) -> list[str]:
        return [f.value for f in self.favorites if f.kind == FavoriteKind.AUTHOR]

    def is_premium(self, now: datetime | None = None) -> bool:
        if self.tier != Tier.PREMIUM:
            return False
        if self.tier_expires_at is None:
            return True
        return as_utc(self.tier_expires_at) > (now or _utc_now())


class UserFavorite(Base):
    __tablename__ = "user_favorites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[FavoriteKind] = mapped_column(String(20), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)

    user: Mapped["User"] = relationship(back_populates="favorites")

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "value", name="uq_user_favorites_user_kind_value"),
        Index("idx_user_favorites_kind_value", "kind", "value"),
    )


class Book(Base):
    __tablename__ = "books"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(1000), nullable=False)
    author: Mapped[str] = mapped_column(String(500), nullable=False)
    isbn: Mapped[str | None] = mapped_column(String(32), unique=True)
    genres: Mapped[list] = mapped_column(JSON, default=list)
    cover_url: Mapped[str | None] = mapped_column(String(1000))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class UserBook(Base):
    __tablename__ = "user_books"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    book_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("books.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[ReadingStatus] = mapped_column(String(20), default=ReadingStatus.WANT_TO_READ)
    progress: Mapped[int] = mapped_column(SmallInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    user: Mapped["User"] = relationship(back_populates="user_books")
    book: Mapped["Book"] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_user_books_user_book"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_user_books_progress"),
        Index("idx_user_books_book_status", "book_id", "status"),
    )


class Match(Base):
    __tablename__ = "matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[MatchStatus] = mapped_column(String(20), default=MatchStatus.PENDING)
    message: Mapped[str | None] = mapped_column(Text)
    book_context: Mapped[str | None] = mapped_column(String(1000))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    sender: Mapped["User"] = relationship(foreign_keys=[sender_id])
    receiver: Mapped["User"] = relationship(foreign_keys=[receiver_id])

    __table_args__ = (
        UniqueConstraint("sender_id", "receiver_id", name="uq_matches_sender_receiver"),
        Index("idx_matches_receiver_status", "receiver_id", "status"),
        Index("idx_matches_status_created", "status", "created_at"),
    )


class MatchQuota(Base):
    __tablename__ = "match_quotas"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    used_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reset_date: Mapped[date] = mapped_column(Date, nullable=False)

    user: Mapped["User"] = relationship(back_populates="match_quota")

    __table_args__ = (CheckConstraint("used_today >= 0", name="ck_match_quotas_used_today"),)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (Index("idx_notifications_user_created", "user_id", "created_at"),)


class Space(Base):
    __tablename__ = "spaces"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    book_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("books.id", ondelete="SET NULL")
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    members: Mapped[list["SpaceMember"]] = relationship(
        back_populates="space",
        cascade="all, delete",
        passive_deletes=True,
    )
    call_session: Mapped["CallSession"] = relationship(
        back_populates="space",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class SpaceMember(Base):
    __tablename__ = "space_members"

    space_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("spaces.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[SpaceRole] = mapped_column(String(20), default=SpaceRole.MEMBER)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    space: Mapped["Space"] = relationship(back_populates="members")


class CallSession(Base):
    __tablename__ = "call_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    space_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("spaces.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    provider: Mapped[CallProvider] = mapped_column(String(20), nullable=False)
    provider_room_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    provider_meta: Mapped[dict | None] = mapped_column(JSON)
    status: Mapped[CallStatus] = mapped_column(String(20), default=CallStatus.WAITING)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_sec: Mapped[int | None] = mapped_column(Integer)
    max_participants: Mapped[int] = mapped_column(SmallInteger, default=20)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    space: Mapped["Space"] = relationship(back_populates="call_session")
    participants: Mapped[list["CallParticipant"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class CallParticipant(Base):
    __tablename__ = "call_participants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("call_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    provider_uid: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[ParticipantRole] = mapped_column(String(20), default=ParticipantRole.LISTENER)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    session: Mapped["CallSession"] = relationship(back_populates="participants")

    __table_args__ = (
        Index("idx_call_participants_session_user", "session_id", "user_id"),
        Index("idx_call_participants_session_uid", "session_id", "provider_uid"),
    )


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[WebhookSource] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[WebhookStatus] = mapped_column(String(20), default=WebhookStatus.PENDING)
    error: Mapped[str | None] = mapped_column(Text)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_webhook_logs_source_external_id"),
    )

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Literal
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from bookworm.core.config import get_settings
from bookworm.core.errors import DuplicateAction, NotFound, QuotaExceeded, ValidationFailed
from bookworm.models import (
    Match, MatchStatus, NotificationType, ReadingStatus, User, UserBook,
    UserFavorite, FavoriteKind
)
from bookworm.services.notifications import notify
from bookworm.services.quota import QuotaTracker

settings = get_settings()
logger = logging.getLogger(__name__)

MatchAction = Literal["like", "pass"]

SHARED_BOOK_POINTS = 50
AUTHOR_POINTS, AUTHOR_CAP = 30, 30
GENRE_POINTS, GENRE_CAP = 10, 30
CURRENT_READS_SHOWN = 5


def score_candidate(shared_books: int, shared_authors: int, shared_genres: int) -> int:
    """Compatibility score of a candidate reader, 0..110."""
    score = SHARED_BOOK_POINTS if shared_books > 0 else 0
    score += min(AUTHOR_CAP, AUTHOR_POINTS * shared_authors)
    score += min(GENRE_CAP, GENRE_POINTS * shared_genres)
    return score


def _overlap(mine: set[str], theirs: list[str]) -> list[str]:
    return sorted({value for value in theirs if value.lower() in mine})


@dataclass
class BookSummary:
    title: str
    author: str
    cover_url: str | None = None
    progress: int | None = None


@dataclass
class ScoredProfile:
    id: uuid.UUID
    name: str | None
    image: str | None
    bio: str | None
    score: int
    books_read_this_year: int
    shared_books: list[BookSummary] = field(default_factory=list)
    shared_authors: list[str] = field(default_factory=list)
    shared_genres: list[str] = field(default_factory=list)
    currently_reading: list[BookSummary] = field(default_factory=list)
    favorite_genres: list[str] = field(default_factory=list)


@dataclass
class MatchResult:
    match: Match
    is_mutual: bool


@dataclass
class Connection:
    match_id: uuid.UUID
    user: User
    book_context: str | None
    message: str | None
    matched_at: datetime


class MatchEngine:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.quota = QuotaTracker(db)

    async def _get_active_user(self, user_id: uuid.UUID, label: str = "User") -> User:
        result = await self.db.execute(
            select(User).options(selectinload(User.favorites)).where(User.id == user_id)
        )
        user = result.scalar_one_or_none()
        if not user or user.deleted_at is not None:
            raise NotFound(f"{label} not found")
        return user

    async def list_candidates(self, user_id: uuid.UUID) -> list[ScoredProfile]:
        """Rank readers who share a current read, a favorite author or a favorite genre."""
        me = await self._get_active_user(user_id)

        my_book_ids = set(
            (
                await self.db.execute(
                    select(UserBook.book_id).where(
                        UserBook.user_id == user_id,
                        UserBook.status == ReadingStatus.READING,
                    )
                )
            ).scalars()
        )
        my_authors = {a.lower() for a in me.favorite_authors}
        my_genres = {g.lower() for g in me.favorite_genres}

        pool_filters = []
        if my_book_ids:
            pool_filters.append(
                User.id.in_(
                    select(UserBook.user_id).where(
                        UserBook.book_id.in_(list(my_book_ids)),
                        UserBook.status == ReadingStatus.READING,
                    )
                )
            )
        for kind, values in ((FavoriteKind.AUTHOR, my_authors), (FavoriteKind.GENRE, my_genres)):
            if values:
                pool_filters.append(
                    User.id.in_(
                        select(UserFavorite.user_id).where(
                            UserFavorite.kind == kind,
                            func.lower(UserFavorite.value).in_(sorted(values)),
                        )
                    )
                )
        if not pool_filters:
            return []

        sent = select(Match.receiver_id).where(Match.sender_id == user_id)
        received = select(Match.sender_id).where(Match.receiver_id == user_id)

        result = await self.db.execute(
            select(User)
            .options(
                selectinload(User.favorites),
                selectinload(User.user_books).selectinload(UserBook.book),
            )
            .where(
                User.id != user_id,
                User.deleted_at.is_(None),
                User.id.not_in(sent),
                User.id.not_in(received),
                or_(*pool_filters),
            )
            .order_by(User.created_at.desc())
            .limit(settings.match_candidate_pool_size)
        )
        candidates = result.scalars().all()

        profiles = []
        for candidate in candidates:
            reading = [ub for ub in candidate.user_books if ub.status == ReadingStatus.READING]
            shared_books = [ub.book for ub in reading if ub.book_id in my_book_ids]
            shared_authors = _overlap(my_authors, candidate.favorite_authors)
            shared_genres = _overlap(my_genres, candidate.favorite_genres)
            profiles.append(
                ScoredProfile(
                    id=candidate.id,
                    name=candidate.name,
                    image=candidate.image,
                    bio=candidate.bio,
                    score=score_candidate(len(shared_books), len(shared_authors), len(shared_genres)),
                    books_read_this_year=candidate.books_read_this_year or 0,
                    shared_books=[BookSummary(title=b.title, author=b.author) for b in shared_books],
                    shared_authors=shared_authors,
                    shared_genres=shared_genres,
                    currently_reading=[
                        BookSummary(
                            title=ub.book.title,
                            author=ub.book.author,
                            cover_url=ub.book.cover_url,
                            progress=ub.progress,
                        )
                        for ub in reading[:CURRENT_READS_SHOWN]
                    ],
                    favorite_genres=candidate.favorite_genres,
                )
            )

        # Equal scores keep no particular order.
        profiles.sort(key=lambda p: p.score, reverse=True)
        return profiles[: settings.match_candidate_limit]

    async def act(
        self,
        user_id: uuid.UUID,
        receiver_id: uuid.UUID,
        action: MatchAction,
        message: str | None = None,
        book_context: str | None = None,
        today: date | None = None,
    ) -> MatchResult:
        """Record a like or pass from user_id towards receiver_id."""
        if action not in ("like", "pass"):
            raise ValidationFailed("Invalid action")
        if receiver_id == user_id:
            raise ValidationFailed("Cannot match with yourself")

        user = await self._get_active_user(user_id)
        await self._get_active_user(receiver_id, label="Receiver")

        if not user.is_premium():
            used = await self.quota.used_today(user_id, today)
            if used >= settings.free_daily_match_limit:
                raise QuotaExceeded()

        # Passing is free: no quota, no mutuality check.
        if action == "pass":
            match = Match(sender_id=user_id, receiver_id=receiver_id, status=MatchStatus.REJECTED)
            self.db.add(match)
            await self._flush_new_match()
            await self.db.commit()
            return MatchResult(match=match, is_mutual=False)

        reverse = await self.db.scalar(
            select(Match)
            .where(
                Match.sender_id == receiver_id,
                Match.receiver_id == user_id,
                Match.status == MatchStatus.PENDING,
            )
            .with_for_update()
        )

        if reverse:
            reverse.status = MatchStatus.ACCEPTED
            match = Match(
                sender_id=user_id,
                receiver_id=receiver_id,
                status=MatchStatus.ACCEPTED,
                message=message,
                book_context=book_context or reverse.book_context,
            )
            self.db.add(match)
            await self._flush_new_match()
            notify(self.db, [user_id, receiver_id], NotificationType.MATCH_ACCEPTED)
        else:
            match = Match(
                sender_id=user_id,
                receiver_id=receiver_id,
                status=MatchStatus.PENDING,
                message=message,
                book_context=book_context,
            )
            self.db.add(match)
            await self._flush_new_match()
            notify(self.db, [receiver_id], NotificationType.MATCH_REQUEST)

        limit = None if user.is_premium() else settings.free_daily_match_limit
        if not await self.quota.increment(user_id, today, limit=limit):
            # A concurrent swipe used the last action of the day.
            await self.db.rollback()
            raise QuotaExceeded()
        await self.db.commit()

        logger.info(
            "Match %s: %s -> %s (mutual=%s)", match.status, user_id, receiver_id, bool(reverse)
        )
        return MatchResult(match=match, is_mutual=reverse is not None)

    async def _flush_new_match(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateAction("You have already responded to this reader")

    async def connections(self, user_id: uuid.UUID) -> list[Connection]:
        """Accepted matches, newest first, one entry per counterpart."""
        result = await self.db.execute(
            select(Match)
            .options(selectinload(Match.sender), selectinload(Match.receiver))
            .where(
                Match.status == MatchStatus.ACCEPTED,
                or_(Match.sender_id == user_id, Match.receiver_id == user_id),
            )
            .order_by(Match.updated_at.desc())
        )

        seen: set[uuid.UUID] = set()
        connections = []
        for match in result.scalars().all():
            other = match.receiver if match.sender_id == user_id else match.sender
            if other.id in seen or other.deleted_at is not None:
                continue
            seen.add(other.id)
            connections.append(
                Connection(
                    match_id=match.id,
                    user=other,
                    book_context=match.book_context,
                    message=match.message,
                    matched_at=match.updated_at,
                )
            )
        return connections

    async def expire_stale(self, now: datetime | None = None) -> int:
        """Mark PENDING requests older than the expiry window as EXPIRED. Does not commit."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=settings.match_expiry_days)
        result = await self.db.execute(
            update(Match)
            .where(Match.status == MatchStatus.PENDING, Match.created_at < cutoff)
            .values(status=MatchStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

import uuid
from datetime import date, datetime, timezone
from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.core.config import get_settings
from bookworm.core.database import insert
from bookworm.models import MatchQuota, User

settings = get_settings()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class QuotaTracker:
    """
    Counts match actions per user per UTC day.

    A row whose reset_date is before today counts as zero; the counter is
    only ever advanced through a single upsert so double-submitted swipes
    cannot lose an update.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def used_today(self, user_id: uuid.UUID, today: date | None = None) -> int:
        today = today or utc_today()
        quota = await self.db.get(MatchQuota, user_id, populate_existing=True)
        if not quota or quota.reset_date < today:
            return 0
        return quota.used_today

    async def increment(self, user_id: uuid.UUID, today: date | None = None, limit: int | None = None) -> bool:
        """
        Add one action to today's counter. Does not commit.

        With a limit the counter only advances while it is stale or below
        the limit, checked inside the same statement; returns False when
        the limit was already reached.
        """
        today = today or utc_today()
        stmt = insert(self.db, MatchQuota).values(user_id=user_id, used_today=1, reset_date=today)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MatchQuota.user_id],
            set_={
                "used_today": case(
                    (MatchQuota.reset_date < today, 1),
                    else_=MatchQuota.used_today + 1,
                ),
                "reset_date": today,
            },
            where=(
                None if limit is None
                else (MatchQuota.reset_date < today) | (MatchQuota.used_today < limit)
            ),
        )
        result = await self.db.execute(stmt)
        return bool(result.rowcount)

    async def remaining(self, user: User, today: date | None = None) -> int | None:
        """Actions left today, or None when the user is not capped."""
        if user.is_premium():
            return None
        used = await self.used_today(user.id, today)
        return max(settings.free_daily_match_limit - used, 0)

    async def reset_stale(self, today: date | None = None) -> int:
        """Zero every counter whose reset_date precedes today. Does not commit."""
        today = today or utc_today()
        result = await self.db.execute(
            update(MatchQuota)
            .where(MatchQuota.reset_date < today)
            .values(used_today=0, reset_date=today)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

import logging
from datetime import date, datetime
from sqlalchemy.ext.asyncio import AsyncSession
from bookworm.services.matching import MatchEngine
from bookworm.services.quota import QuotaTracker

logger = logging.getLogger(__name__)


async def reset_match_quotas(db: AsyncSession, today: date | None = None) -> int:
    """Zero stale daily match counters. Safe to run any number of times per day."""
    count = await QuotaTracker(db).reset_stale(today)
    await db.commit()
    logger.info("Reset %d match quota counters", count)
    return count


async def expire_matches(db: AsyncSession, now: datetime | None = None) -> int:
    """Expire match requests that went unanswered for too long."""
    count = await MatchEngine(db).expire_stale(now)
    await db.commit()
    logger.info("Expired %d pending matches", count)
    return count

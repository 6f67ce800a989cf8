from datetime import datetime, timezone
import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from aarath.models import BidArchive

logger = structlog.get_logger()

def to_naive_utc(ts_ms: int | None) -> datetime:
    """Server timestamp (epoch ms) as naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if ts_ms is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).replace(tzinfo=None)

async def archive_bid(db: AsyncSession, auction_id: str, bid_id: str, bid: dict | None) -> bool:
    """Record an accepted bid. Failures are logged; the live ledger stays authoritative."""
    if not bid:
        return False
    try:
        db.add(BidArchive(
            auction_id=str(auction_id),
            bid_id=bid_id,
            user_id=bid.get("userId"),
            user_name=bid.get("userName"),
            amount=bid.get("amount"),
            placed_at=to_naive_utc(bid.get("timestamp")),
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Failed to archive bid", auction_id=auction_id, bid_id=bid_id)
        return False
    return True

async def archived_bid_count(db: AsyncSession, auction_id: str) -> int:
    res = await db.execute(select(func.count(BidArchive.id)).where(BidArchive.auction_id == str(auction_id)))
    return int(res.scalar() or 0)

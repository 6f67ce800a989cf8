"""Per-auction and global activity feeds.

Writers cap each scope at ``retention`` entries by dropping the oldest push
ids; readers sort newest first and cut to a display window.
"""
import structlog

from aarath.realtime.connection import StoreConnection
from aarath.realtime.store import ABORT, SERVER_TIMESTAMP

logger = structlog.get_logger()

ACTIVITY_TYPES = ("bid", "join", "leave", "status_change")


def build_entry(kind: str, user_id: str, user_name: str, message: str, data: dict | None = None,
                auction_id: str | None = None) -> dict:
    if kind not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type {kind!r}")
    entry = {"type": kind, "userId": user_id, "userName": user_name, "message": message,
             "timestamp": SERVER_TIMESTAMP}
    if data:
        entry["data"] = data
    if auction_id is not None:
        entry["auctionId"] = auction_id
    return entry


def trim(collection: dict | None, retention: int) -> dict:
    """Keep the newest ``retention`` entries; push ids sort in creation order."""
    collection = dict(collection or {})
    if len(collection) <= retention:
        return collection
    keep = sorted(collection)[-retention:]
    return {key: collection[key] for key in keep}


def append_entry(collection: dict | None, key: str, entry: dict, retention: int) -> dict:
    collection = dict(collection or {})
    collection[key] = entry
    return trim(collection, retention)


def recent(collection: dict | None, limit: int) -> list[dict]:
    entries = [{"id": key, **value} for key, value in (collection or {}).items() if isinstance(value, dict)]
    entries.sort(key=lambda e: (e.get("timestamp") or 0, e["id"]), reverse=True)
    return entries[:limit]


class ActivityLog:
    def __init__(self, connection: StoreConnection, retention: int = 200):
        self.connection = connection
        self.retention = retention

    async def add(self, scope_path: str, entry: dict) -> str | None:
        """Append ``entry`` to a feed. Failures are logged, never raised."""
        try:
            key = await self.connection.append(scope_path, {**entry, "timestamp": SERVER_TIMESTAMP})
            await self.connection.transaction(scope_path, self._trim_or_abort)
        except Exception:
            logger.exception("Failed to add activity", scope=scope_path, type=entry.get("type"))
            return None
        return key

    def _trim_or_abort(self, collection):
        if not collection or len(collection) <= self.retention:
            return ABORT
        return trim(collection, self.retention)

"""Public face of the live-auction subsystem.

``BiddingCoordinator`` wires the room registry, bid ledger, presence tracker
and activity log onto one ``StoreConnection``. Everything the UI layer or the
HTTP/WebSocket endpoints need goes through it.
"""
from typing import Any, Callable

import structlog

from aarath.auctions import paths
from aarath.auctions.activity import ActivityLog, recent
from aarath.auctions.identity import UserIdentity
from aarath.auctions.ledger import BidLedger
from aarath.auctions.presence import PresenceTracker
from aarath.auctions.rooms import AuctionRoomRegistry
from aarath.core.config import Settings, settings as default_settings
from aarath.realtime.connection import StoreConnection, Subscription

logger = structlog.get_logger()


def as_list(collection: dict | None) -> list[dict]:
    return [{"id": key, **value} for key, value in (collection or {}).items() if isinstance(value, dict)]


def newest_first(items: list[dict]) -> list[dict]:
    return sorted(items, key=lambda item: (item.get("timestamp") or 0, item["id"]), reverse=True)


class BiddingCoordinator:
    def __init__(self, connection: StoreConnection, settings: Settings | None = None):
        settings = settings or default_settings
        scope = settings.participant_scope
        self.connection = connection
        self.participant_scope = scope
        self.activity_window = settings.activity_window
        self.activity = ActivityLog(connection, settings.activity_retention)
        self.rooms = AuctionRoomRegistry(connection, scope)
        self.ledger = BidLedger(connection, self.activity, scope,
                                min_increment_ratio=settings.min_increment_ratio,
                                enforce_minimum_bid=settings.enforce_minimum_bid)
        self.presence = PresenceTracker(connection, self.activity, scope)

    # -- commands ------------------------------------------------------

    async def initialize_auction_room(self, auction_data) -> bool:
        return await self.rooms.initialize(auction_data)

    async def join_auction_room(self, auction_id, identity: UserIdentity | None) -> bool:
        return await self.presence.join(auction_id, identity)

    async def leave_auction_room(self, auction_id) -> None:
        await self.presence.leave(auction_id)

    async def place_bid(self, auction_id, amount, identity: UserIdentity | None) -> str:
        return await self.ledger.place_bid(auction_id, amount, identity)

    async def update_participant_count(self, auction_id) -> int | None:
        return await self.presence.update_participant_count(auction_id)

    async def reconcile(self, auction_id) -> dict:
        return await self.ledger.reconcile(auction_id)

    async def cleanup(self, auction_id) -> None:
        try:
            await self.leave_auction_room(auction_id)
            logger.info("Cleaned up auction room", auction_id=str(auction_id))
        except Exception:
            logger.exception("Error cleaning up auction room", auction_id=str(auction_id))

    # -- queries -------------------------------------------------------

    async def get_auction_room(self, auction_id) -> dict:
        return await self.rooms.get(auction_id)

    async def get_total_bids(self, auction_id) -> int:
        return await self.ledger.get_total_bids(auction_id)

    async def get_user_bid_count(self, auction_id, user_id) -> int:
        return await self.ledger.get_user_bid_count(auction_id, user_id)

    async def get_activity(self, auction_id=None, limit: int | None = None) -> list[dict]:
        path = paths.room_activity(auction_id) if auction_id is not None else paths.GLOBAL_ACTIVITY
        return recent(await self.connection.read(path), limit or self.activity_window)

    # -- subscriptions -------------------------------------------------

    def subscribe_to_auction(self, auction_id, callback: Callable[[dict], Any]) -> Subscription:
        def on_value(room):
            if room:
                callback(room)
        return self.connection.subscribe(paths.room(auction_id), on_value)

    def subscribe_to_bids(self, auction_id, callback: Callable[[list[dict]], Any]) -> Subscription:
        return self.connection.subscribe(paths.bids(auction_id), lambda bids: callback(newest_first(as_list(bids))))

    def subscribe_to_participants(self, auction_id, callback: Callable[[list[dict]], Any]) -> Subscription:
        path = paths.participants(auction_id, self.participant_scope)
        return self.connection.subscribe(path, lambda participants: callback(as_list(participants)))

    def subscribe_to_activity(self, auction_id, callback: Callable[[list[dict]], Any],
                              limit: int | None = None) -> Subscription:
        window = limit or self.activity_window
        return self.connection.subscribe(paths.room_activity(auction_id),
                                         lambda entries: callback(recent(entries, window)))

    def subscribe_to_global_activity(self, callback: Callable[[list[dict]], Any],
                                     limit: int | None = None) -> Subscription:
        window = limit or self.activity_window
        return self.connection.subscribe(paths.GLOBAL_ACTIVITY, lambda entries: callback(recent(entries, window)))

"""View-side consumers of the coordinator.

These turn subscriptions into plain state objects a page, a WebSocket
session or a template can render. They hold no authority of their own.
"""
import time
from functools import partial
from typing import Any, Callable

import structlog
from pydantic import BaseModel

from aarath.auctions.coordinator import BiddingCoordinator
from aarath.auctions.identity import UserIdentity
from aarath.auctions.payloads import DEFAULT_TITLE
from aarath.core.errors import AuctionError, AuthError, ValidationError
from aarath.realtime.connection import Subscription

logger = structlog.get_logger()


class TimeLeft(BaseModel):
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    ended: bool = False
    total_seconds: int = 0


def time_left(end_time: int | None, now_ms: int | None = None, has_ended: bool = False) -> TimeLeft:
    if has_ended:
        return TimeLeft(ended=True)
    if end_time is None:
        return TimeLeft()
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    difference = end_time - now_ms
    if difference <= 0:
        return TimeLeft(ended=True)
    total = difference // 1000
    return TimeLeft(hours=total // 3600, minutes=(total % 3600) // 60, seconds=total % 60, total_seconds=total)


class OnlineSummary(BaseModel):
    online_count: int = 0
    online_users: list[dict] = []
    total_participants: int = 0


def online_participants(participants: list[dict] | None) -> OnlineSummary:
    if not isinstance(participants, list):
        return OnlineSummary()
    online = [p for p in participants if p.get("isOnline")]
    return OnlineSummary(online_count=len(online), online_users=online, total_participants=len(participants))


class AuctionStats(BaseModel):
    total_bids: int = 0
    unique_bidders: int = 0
    average_bid_increment: float = 0.0
    highest_bidder: dict | None = None
    bid_frequency: float = 0.0  # bids per minute


def auction_stats(bids: list[dict] | None, metadata: dict | None = None) -> AuctionStats:
    """Aggregate a newest-first bid list into the numbers the room header shows."""
    if not bids:
        return AuctionStats()
    amounts = sorted(b.get("amount", 0) for b in bids)
    average_increment = (amounts[-1] - amounts[0]) / (len(bids) - 1) if len(bids) > 1 else 0.0

    frequency = 0.0
    if len(bids) > 1 and metadata and metadata.get("startTime"):
        stamps = [b.get("timestamp") or 0 for b in bids]
        span_minutes = (max(stamps) - min(stamps)) / 60000
        frequency = len(bids) / span_minutes if span_minutes > 0 else 0.0

    return AuctionStats(
        total_bids=len(bids),
        unique_bidders=len({b.get("userId") for b in bids}),
        average_bid_increment=average_increment,
        highest_bidder=next((b for b in bids if b.get("isWinning")), bids[0]),
        bid_frequency=frequency,
    )


class RealtimeAuctionState(BaseModel):
    metadata: dict | None = None
    bids: list[dict] = []
    participants: list[dict] = []
    activity: list[dict] = []
    is_connected: bool = False
    is_loading: bool = True
    error: str | None = None


class RealtimeAuctionView:
    """Keeps one auction room's state current for as long as it is open.

    ``open`` initializes the room, joins it when an identity is given and
    subscribes to the room, bids, participants and activity. ``close``
    releases every subscription and leaves. ``on_change`` is called with the
    name of the stream that moved and the whole state.
    """

    def __init__(self, coordinator: BiddingCoordinator, auction_id, auction_data: dict | None = None,
                 identity: UserIdentity | None = None,
                 on_change: Callable[[str, RealtimeAuctionState], Any] | None = None):
        self.coordinator = coordinator
        self.auction_id = str(auction_id)
        self.auction_data = auction_data
        self.identity = identity
        self.on_change = on_change
        self.state = RealtimeAuctionState()
        self._subscriptions: list[Subscription] = []

    async def __aenter__(self) -> "RealtimeAuctionView":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        if self.auction_data is not None:
            try:
                await self.coordinator.initialize_auction_room(self.auction_data)
                if self.identity is not None:
                    await self.coordinator.join_auction_room(self.auction_id, self.identity)
            except AuctionError as exc:
                logger.warning("Error initializing auction room", auction_id=self.auction_id, error=exc.detail)
                self.state.error = exc.detail
                self.state.is_loading = False

        c = self.coordinator
        self._subscriptions = [
            c.subscribe_to_auction(self.auction_id, self._on_room),
            c.subscribe_to_bids(self.auction_id, partial(self._set, "bids")),
            c.subscribe_to_participants(self.auction_id, partial(self._set, "participants")),
            c.subscribe_to_activity(self.auction_id, partial(self._set, "activity")),
        ]

    def detach(self) -> None:
        """Stop listening without leaving the room."""
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    async def close(self) -> None:
        self.detach()
        await self.coordinator.cleanup(self.auction_id)

    def _on_room(self, room: dict) -> None:
        self.state.metadata = room.get("metadata")
        self.state.is_connected = True
        self.state.is_loading = False
        self.state.error = None
        self._changed("metadata")

    def _set(self, field: str, value: list[dict]) -> None:
        setattr(self.state, field, value)
        self._changed(field)

    def _changed(self, field: str) -> None:
        if self.on_change is not None:
            self.on_change(field, self.state)


class BiddingSession:
    """Bid placement with the in-flight/error bookkeeping a bid button needs."""

    def __init__(self, coordinator: BiddingCoordinator, auction_id, identity: UserIdentity | None):
        self.coordinator = coordinator
        self.auction_id = str(auction_id)
        self.identity = identity
        self.is_placing = False
        self.error: str | None = None
        self.last_bid_id: str | None = None

    async def place_bid(self, amount) -> str:
        if self.identity is None:
            raise AuthError("User must be authenticated to place bid")
        if not amount:
            raise ValidationError("Missing required parameters for bid placement")
        self.is_placing = True
        self.error = None
        try:
            bid_id = await self.coordinator.place_bid(self.auction_id, amount, self.identity)
        except AuctionError as exc:
            self.error = exc.detail
            raise
        finally:
            self.is_placing = False
        self.last_bid_id = bid_id
        return bid_id

    async def get_total_bids(self) -> int:
        return await self.coordinator.get_total_bids(self.auction_id)


def auction_title(auction: dict) -> str:
    return (auction.get("product") or {}).get("title") or auction.get("title") or DEFAULT_TITLE


class GlobalActivityFeed:
    """Live ticker across many auctions.

    Each auction contributes its newest ``per_auction`` entries; the merged
    feed is newest first and capped at ``limit``.
    """

    def __init__(self, coordinator: BiddingCoordinator, auctions: list[dict], per_auction: int = 5,
                 limit: int = 100, on_change: Callable[[list[dict]], Any] | None = None):
        self.coordinator = coordinator
        self.auctions = [a for a in auctions or [] if a and a.get("id") is not None]
        self.per_auction = per_auction
        self.limit = limit
        self.on_change = on_change
        self.activity: list[dict] = []
        self._by_auction: dict[str, list[dict]] = {}
        self._subscriptions: list[Subscription] = []

    def start(self) -> None:
        for auction in self.auctions:
            sub = self.coordinator.subscribe_to_activity(auction["id"], partial(self._on_activity, auction),
                                                          limit=self.per_auction)
            self._subscriptions.append(sub)

    def stop(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    def _on_activity(self, auction: dict, entries: list[dict]) -> None:
        auction_id = str(auction["id"])
        title = auction_title(auction)
        self._by_auction[auction_id] = [
            {
                **entry,
                "auctionId": auction_id,
                "auctionTitle": title,
                "bidderName": entry.get("userName") or "Anonymous",
                "amount": (entry.get("data") or {}).get("bidAmount", 0),
            }
            for entry in entries
        ]
        merged = [entry for entries in self._by_auction.values() for entry in entries]
        merged.sort(key=lambda e: (e.get("timestamp") or 0, e["id"]), reverse=True)
        self.activity = merged[:self.limit]
        if self.on_change is not None:
            self.on_change(self.activity)

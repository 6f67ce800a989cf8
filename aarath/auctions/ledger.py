"""Append-only bid ledger and the derived fields on the room summary.

A bid, the summary fields it moves and its room activity entry are written in
one transaction on the auction room, so concurrent bidders can never lose an
update to ``totalBids`` or leave a bid without its summary.
"""
import math

import structlog

from aarath.auctions import paths
from aarath.auctions.activity import ActivityLog, append_entry, build_entry
from aarath.auctions.identity import UserIdentity
from aarath.core.errors import AuctionClosedError, AuthError, BidTooLowError, NotFoundError, ValidationError
from aarath.realtime.connection import StoreConnection
from aarath.realtime.store import ABORT, SERVER_TIMESTAMP, increment

logger = structlog.get_logger()


def validate_amount(amount) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise ValidationError("Bid amount must be a number")
    if not math.isfinite(amount):
        raise ValidationError("Bid amount must be finite")
    if amount <= 0:
        raise ValidationError("Bid amount must be positive")
    return float(amount)


def minimum_next_bid(metadata: dict, min_increment_ratio: float = 0.01) -> float:
    """Starting bid while nobody has bid, else the current high plus the minimum increment, rounded up."""
    starting = float(metadata.get("startingBid") or 0)
    if not metadata.get("totalBids"):
        return starting
    current = float(metadata.get("currentHighestBid") or starting)
    return float(math.ceil(round(current * (1 + min_increment_ratio), 6)))


def check_open(metadata: dict, now_ms: int) -> None:
    status = metadata.get("status", "active")
    if status != "active":
        raise AuctionClosedError(f"Auction is {status}")
    end_time = metadata.get("endTime")
    if end_time is not None and now_ms >= end_time:
        raise AuctionClosedError("Auction has ended")


def latest_bid(bids: dict | None) -> tuple[str, dict] | None:
    return max((bids or {}).items(), key=lambda kv: (kv[1].get("timestamp") or 0, kv[0]), default=None)


class BidLedger:
    def __init__(self, connection: StoreConnection, activity: ActivityLog, participant_scope: str = "global",
                 min_increment_ratio: float = 0.01, enforce_minimum_bid: bool = True):
        self.connection = connection
        self.activity = activity
        self.participant_scope = participant_scope
        self.min_increment_ratio = min_increment_ratio
        self.enforce_minimum_bid = enforce_minimum_bid

    async def place_bid(self, auction_id, amount, identity: UserIdentity | None) -> str:
        if identity is None:
            raise AuthError("User must be authenticated to place bid")
        amount = validate_amount(amount)
        auction_id = str(auction_id)
        user_name = identity.display_name
        bid_id = self.connection.new_key()
        activity_id = self.connection.new_key()
        bid = {"userId": identity.uid, "userName": user_name, "amount": amount,
               "timestamp": SERVER_TIMESTAMP, "isWinning": True}
        message = f"{user_name} placed a bid of ${amount:,.0f}"
        entry = build_entry("bid", identity.uid, user_name, message, {"bidAmount": amount}, auction_id)

        def apply(room):
            if not room or not room.get("metadata"):
                raise NotFoundError(f"Auction room {auction_id} not found")
            metadata = room["metadata"]
            check_open(metadata, self.connection.server_time())
            if self.enforce_minimum_bid:
                minimum = minimum_next_bid(metadata, self.min_increment_ratio)
                if amount < minimum:
                    raise BidTooLowError(amount, minimum)
            bids = room.setdefault("bids", {})
            bids[bid_id] = bid
            metadata["currentHighestBid"] = amount
            metadata["totalBids"] = len(bids)
            metadata["updatedAt"] = SERVER_TIMESTAMP
            room["activity"] = append_entry(room.get("activity"), activity_id, entry, self.activity.retention)
            return room

        result = await self.connection.transaction(paths.room(auction_id), apply)
        logger.info("Bid placed", auction_id=auction_id, bid_id=bid_id, amount=amount, user_id=identity.uid,
                    total_bids=result.snapshot["metadata"]["totalBids"])

        await self.connection.update(paths.participant(auction_id, identity.uid, self.participant_scope), {
            "userId": identity.uid,
            "userName": user_name,
            "totalBids": increment(1),
            "lastSeen": SERVER_TIMESTAMP,
        })
        await self.activity.add(paths.GLOBAL_ACTIVITY, entry)
        return bid_id

    async def get_total_bids(self, auction_id) -> int:
        return len(await self.connection.read(paths.bids(auction_id)) or {})

    async def get_user_bid_count(self, auction_id, user_id) -> int:
        bids = await self.connection.read(paths.bids(auction_id)) or {}
        return sum(1 for bid in bids.values() if bid.get("userId") == str(user_id))

    async def reconcile(self, auction_id) -> dict:
        """Recompute the summary's derived fields from the ledger itself."""
        auction_id = str(auction_id)

        def repair(room):
            if not room or not room.get("metadata"):
                raise NotFoundError(f"Auction room {auction_id} not found")
            metadata = room["metadata"]
            bids = room.get("bids") or {}
            latest = latest_bid(bids)
            total = len(bids)
            highest = latest[1]["amount"] if latest else metadata.get("startingBid", 0)
            if metadata.get("totalBids") == total and metadata.get("currentHighestBid") == highest:
                return ABORT
            metadata["totalBids"] = total
            metadata["currentHighestBid"] = highest
            metadata["updatedAt"] = SERVER_TIMESTAMP
            return room

        result = await self.connection.transaction(paths.room(auction_id), repair)
        if result.snapshot is None:
            raise NotFoundError(f"Auction room {auction_id} not found")
        if result.committed:
            logger.warning("Auction summary repaired", auction_id=auction_id,
                           total_bids=result.snapshot["metadata"]["totalBids"])
        return result.snapshot["metadata"]

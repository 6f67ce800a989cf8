from collections.abc import Mapping

import structlog

from aarath.auctions import paths
from aarath.auctions.payloads import parse_auction_payload
from aarath.core.errors import NotFoundError, ValidationError
from aarath.realtime.connection import StoreConnection
from aarath.realtime.store import ABORT

logger = structlog.get_logger()


def _auction_id(auction_data) -> str:
    raw = auction_data.get("id") if isinstance(auction_data, Mapping) else getattr(auction_data, "id", None)
    if raw in (None, ""):
        raise ValidationError("Auction ID is required")
    return str(raw)


class AuctionRoomRegistry:
    def __init__(self, connection: StoreConnection, participant_scope: str = "global"):
        self.connection = connection
        self.participant_scope = participant_scope

    async def initialize(self, auction_data) -> bool:
        """Create the room for ``auction_data`` unless one already exists.

        Re-initializing is a no-op so that re-entering a live auction never
        clobbers its bids.
        """
        auction_id = _auction_id(auction_data)
        room_path = paths.room(auction_id)
        if await self.connection.read(paths.metadata(auction_id)) is not None:
            logger.info("Auction room exists, skipping initialization", auction_id=auction_id)
            return True

        seed = parse_auction_payload(auction_data)
        room = seed.to_room()
        if self.participant_scope == "auction":
            room["participants"] = {}

        def create(current):
            # Another client may have created the room since the read above
            if current and current.get("metadata"):
                return ABORT
            # Children written before the summary existed are kept
            return {**room, **(current or {})}

        result = await self.connection.transaction(room_path, create)
        if result.committed:
            logger.info("Auction room initialized", auction_id=auction_id, title=seed.title,
                        starting_bid=seed.starting_bid)
        if self.participant_scope != "auction":
            await self._ensure_participants(auction_id)
        return True

    async def _ensure_participants(self, auction_id: str) -> None:
        path = paths.participants(auction_id, self.participant_scope)
        await self.connection.transaction(path, lambda current: {} if current is None else ABORT)

    async def get(self, auction_id) -> dict:
        room = await self.connection.read(paths.room(auction_id))
        if not room or room.get("metadata") is None:
            raise NotFoundError(f"Auction room {auction_id} not found")
        return room

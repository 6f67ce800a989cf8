"""Normalization of auction payloads at the room-registry boundary.

Auctions arrive in two shapes: straight from the REST backend (nested
``product``, ``endTime``, ``status``) or already transformed for display
(flat ``title``, ``auctionEndTime``, ``auctionStatus``, ``serialNumber``).
Each shape is its own model; both reduce to one ``AuctionRoomSeed``.
"""
from abc import abstractmethod
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from aarath.core.errors import ValidationError
from aarath.realtime.store import SERVER_TIMESTAMP

STATUSES = ("active", "ended", "paused")
DEFAULT_TITLE = "Auction Item"

_DISPLAY_KEYS = ("auctionEndTime", "auctionStatus", "serialNumber", "minimumBid")


def _first(*values):
    for value in values:
        if value:
            return value
    return None


def to_epoch_ms(value: Any) -> int | None:
    """Accept epoch milliseconds, datetimes or ISO-8601 strings."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Unrecognised timestamp {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Unrecognised timestamp {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class AuctionRoomSeed(BaseModel):
    auction_id: str
    product_id: str
    title: str
    status: str = "active"
    start_time: int | None = None
    end_time: int | None = None
    current_highest_bid: float = 0.0
    starting_bid: float = 0.0

    def to_room(self) -> dict:
        return {
            "metadata": {
                "auctionId": self.auction_id,
                "productId": self.product_id,
                "title": self.title,
                "status": self.status,
                "startTime": self.start_time,
                "endTime": self.end_time,
                "currentHighestBid": self.current_highest_bid,
                "startingBid": self.starting_bid,
                # Counts this room's ledger only, whatever the backend reported
                "totalBids": 0,
                "totalParticipants": 0,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
            "bids": {},
            "activity": {},
        }


class ProductRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int | None = None
    title: str | None = None


class _AuctionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | int
    status: str | None = None
    start_time: Any = Field(default=None, alias="startTime")
    created_at: Any = Field(default=None, alias="createdAt")
    end_time: Any = Field(default=None, alias="endTime")
    current_bid: float | None = Field(default=None, alias="currentBid")
    current_highest_bid: float | None = Field(default=None, alias="currentHighestBid")
    starting_bid: float | None = Field(default=None, alias="startingBid")

    @abstractmethod
    def _product_id(self) -> str: ...

    @abstractmethod
    def _title(self) -> str: ...

    def _status(self) -> str | None:
        return self.status

    def _end_time(self) -> Any:
        return self.end_time

    def to_seed(self) -> AuctionRoomSeed:
        status = (self._status() or "active").lower()
        if status not in STATUSES:
            raise ValidationError(f"Unknown auction status {status!r}")
        starting = float(self.starting_bid or 0)
        current = float(_first(self.current_bid, self.current_highest_bid, self.starting_bid) or 0)
        return AuctionRoomSeed(
            auction_id=str(self.id),
            product_id=self._product_id(),
            title=self._title(),
            status=status,
            start_time=to_epoch_ms(_first(self.start_time, self.created_at)),
            end_time=to_epoch_ms(self._end_time()),
            current_highest_bid=max(current, starting),
            starting_bid=starting,
        )


class ApiAuctionPayload(_AuctionPayload):
    """Auction as the REST backend returns it."""

    product_id: str | int | None = Field(default=None, alias="productId")
    product: ProductRef | None = None
    title: str | None = None

    def _product_id(self) -> str:
        product_id = _first(self.product_id, self.product.id if self.product else None)
        return str(product_id) if product_id else f"product_{self.id}"

    def _title(self) -> str:
        return _first(self.product.title if self.product else None, self.title) or DEFAULT_TITLE


class DisplayAuctionPayload(_AuctionPayload):
    """Auction after the listing page reshaped it for display."""

    product_id: str | int | None = Field(default=None, alias="productId")
    serial_number: str | int | None = Field(default=None, alias="serialNumber")
    title: str | None = None
    auction_status: str | None = Field(default=None, alias="auctionStatus")
    auction_end_time: Any = Field(default=None, alias="auctionEndTime")

    def _product_id(self) -> str:
        product_id = _first(self.product_id, self.serial_number)
        return str(product_id) if product_id else f"product_{self.id}"

    def _title(self) -> str:
        return self.title or DEFAULT_TITLE

    def _status(self) -> str | None:
        return _first(self.auction_status, self.status)

    def _end_time(self) -> Any:
        return _first(self.auction_end_time, self.end_time)


def parse_auction_payload(data: Mapping | _AuctionPayload) -> AuctionRoomSeed:
    if isinstance(data, _AuctionPayload):
        return data.to_seed()
    if not isinstance(data, Mapping):
        raise ValidationError("Auction data must be a mapping")
    if data.get("id") in (None, ""):
        raise ValidationError("Auction ID is required")
    model = DisplayAuctionPayload if any(k in data for k in _DISPLAY_KEYS) else ApiAuctionPayload
    try:
        payload = model.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid auction data: {exc.errors()[0]['msg']}") from exc
    return payload.to_seed()

import asyncio
from datetime import datetime, timezone
import pytest
from aarath.auctions.payloads import DEFAULT_TITLE, parse_auction_payload, to_epoch_ms
from aarath.auctions.rooms import AuctionRoomRegistry
from aarath.core.errors import NotFoundError, ValidationError
from aarath.realtime.connection import StoreConnection

END_ISO = "2026-10-20T12:00:00Z"
END_MS = int(datetime(2026, 10, 20, 12, tzinfo=timezone.utc).timestamp() * 1000)


def test_backend_payload_is_normalized():
    seed = parse_auction_payload({
        "id": 7,
        "product": {"id": 3, "title": "Sona Masoori Rice"},
        "startingBid": 100,
        "endTime": END_ISO,
        "status": "ACTIVE",
        "createdAt": "2026-10-19T08:00:00",
    })
    assert seed.auction_id == "7"
    assert seed.product_id == "3"
    assert seed.title == "Sona Masoori Rice"
    assert seed.status == "active"
    assert seed.end_time == END_MS
    assert seed.start_time == int(datetime(2026, 10, 19, 8, tzinfo=timezone.utc).timestamp() * 1000)
    assert seed.starting_bid == 100
    assert seed.current_highest_bid == 100


def test_display_payload_is_normalized_and_current_never_below_starting():
    seed = parse_auction_payload({
        "id": "a9",
        "serialNumber": "SN-1",
        "title": "Basmati",
        "auctionStatus": "paused",
        "auctionEndTime": END_MS,
        "currentBid": 50,
        "startingBid": 80,
    })
    assert seed.product_id == "SN-1"
    assert seed.title == "Basmati"
    assert seed.status == "paused"
    assert seed.end_time == END_MS
    assert seed.current_highest_bid == 80


def test_payload_defaults():
    seed = parse_auction_payload({"id": "x1"})
    assert seed.title == DEFAULT_TITLE
    assert seed.product_id == "product_x1"
    assert seed.status == "active"
    assert seed.end_time is None
    assert seed.starting_bid == 0


@pytest.mark.parametrize("data", [
    {"title": "no id"},
    {"id": ""},
    {"id": "a1", "status": "cancelled"},
    {"id": "a1", "currentBid": "lots"},
    {"id": "a1", "endTime": "next tuesday"},
    ["not", "a", "mapping"],
])
def test_bad_payloads_are_rejected(data):
    with pytest.raises(ValidationError):
        parse_auction_payload(data)


def test_to_epoch_ms_accepts_common_forms():
    assert to_epoch_ms(None) is None
    assert to_epoch_ms(END_MS) == END_MS
    assert to_epoch_ms(END_ISO) == END_MS
    assert to_epoch_ms(datetime(2026, 10, 20, 12)) == END_MS
    with pytest.raises(ValidationError):
        to_epoch_ms(True)


def test_initialize_creates_room_and_participant_pool(store, clock):
    async def scenario():
        registry = AuctionRoomRegistry(StoreConnection(store))
        assert await registry.initialize({"id": "r1", "title": "Wheat", "startingBid": 250}) is True
        return await registry.get("r1")

    room = asyncio.run(scenario())
    meta = room["metadata"]
    assert meta["auctionId"] == "r1"
    assert meta["currentHighestBid"] == 250
    assert meta["totalBids"] == 0
    assert meta["totalParticipants"] == 0
    assert meta["createdAt"] == meta["updatedAt"] == clock.now
    assert room["bids"] == {} and room["activity"] == {}
    assert store.peek("participants") == {}


def test_reinitialize_never_clobbers_live_room(store):
    async def scenario():
        conn = StoreConnection(store)
        registry = AuctionRoomRegistry(conn)
        await registry.initialize({"id": "r2", "title": "Wheat", "startingBid": 250})
        await conn.write("auctions/r2/bids/b1", {"userId": "u1", "amount": 300})
        await conn.write("auctions/r2/metadata/totalBids", 1)
        await registry.initialize({"id": "r2", "title": "Renamed", "startingBid": 1})
        return await registry.get("r2")

    room = asyncio.run(scenario())
    assert room["metadata"]["title"] == "Wheat"
    assert room["metadata"]["totalBids"] == 1
    assert room["bids"] == {"b1": {"userId": "u1", "amount": 300}}


def test_concurrent_initialization_writes_room_once(store):
    commits = []
    original = store.transact

    async def counting(path, update_fn):
        committed, current = await original(path, update_fn)
        if committed and path == "auctions/r3":
            commits.append(path)
        return committed, current

    store.transact = counting

    async def scenario():
        registries = [AuctionRoomRegistry(StoreConnection(store)) for _ in range(8)]
        return await asyncio.gather(*(r.initialize({"id": "r3", "startingBid": 10}) for r in registries))

    assert asyncio.run(scenario()) == [True] * 8
    assert len(commits) == 1
    assert store.peek("auctions/r3/metadata/startingBid") == 10


def test_auction_scoped_participants_live_under_the_room(store):
    async def scenario():
        registry = AuctionRoomRegistry(StoreConnection(store), participant_scope="auction")
        await registry.initialize({"id": "r4"})

    asyncio.run(scenario())
    assert store.peek("auctions/r4/participants") == {}
    assert store.peek("participants") is None


def test_missing_room_and_missing_id(store):
    async def scenario():
        registry = AuctionRoomRegistry(StoreConnection(store))
        with pytest.raises(NotFoundError):
            await registry.get("nope")
        with pytest.raises(ValidationError):
            await registry.initialize({"title": "orphan"})

    asyncio.run(scenario())


def test_backend_bid_count_is_not_seeded(store):
    async def scenario():
        conn = StoreConnection(store)
        registry = AuctionRoomRegistry(conn)
        await registry.initialize({"id": "r5", "startingBid": 100, "totalBids": 5})
        return await registry.get("r5")

    room = asyncio.run(scenario())
    assert room["metadata"]["totalBids"] == 0 == len(room["bids"])


def test_initialize_completes_a_room_that_only_has_children(store):
    async def scenario():
        conn = StoreConnection(store)
        registry = AuctionRoomRegistry(conn)
        await conn.write("auctions/r6/activity/k1", {"type": "join", "timestamp": 1})
        with pytest.raises(NotFoundError):
            await registry.get("r6")
        await registry.initialize({"id": "r6", "title": "Wheat"})
        return await registry.get("r6")

    room = asyncio.run(scenario())
    assert room["metadata"]["title"] == "Wheat"
    assert room["activity"] == {"k1": {"type": "join", "timestamp": 1}}

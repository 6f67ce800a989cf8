import asyncio
import pytest
from aarath.auctions.coordinator import BiddingCoordinator
from aarath.auctions.identity import UserIdentity
from aarath.auctions.views import (BiddingSession, GlobalActivityFeed, RealtimeAuctionView, auction_stats,
                                   auction_title, online_participants, time_left)
from aarath.core.errors import AuthError, BidTooLowError, ValidationError
from aarath.realtime.connection import StoreConnection

ASHA = UserIdentity(uid="u-asha", businessName="Asha Traders")
RAVI = UserIdentity(uid="u-ravi", personalName="Ravi")
NOW = 1_700_000_000_000


def test_time_left():
    assert time_left(None, NOW).ended is False
    assert time_left(NOW + 5000, NOW, has_ended=True).ended is True
    assert time_left(NOW - 1, NOW).ended is True
    left = time_left(NOW + 3_723_500, NOW)
    assert (left.hours, left.minutes, left.seconds, left.total_seconds) == (1, 2, 3, 3723)
    assert left.ended is False


def test_online_participants():
    summary = online_participants([
        {"id": "u1", "isOnline": True},
        {"id": "u2", "isOnline": False},
        {"id": "u3", "isOnline": True},
    ])
    assert summary.online_count == 2
    assert [p["id"] for p in summary.online_users] == ["u1", "u3"]
    assert summary.total_participants == 3
    assert online_participants(None).online_count == 0


def test_auction_stats():
    bids = [
        {"id": "b3", "userId": "u2", "amount": 130, "timestamp": NOW + 180_000, "isWinning": True},
        {"id": "b2", "userId": "u1", "amount": 120, "timestamp": NOW + 60_000, "isWinning": True},
        {"id": "b1", "userId": "u1", "amount": 100, "timestamp": NOW, "isWinning": True},
    ]
    stats = auction_stats(bids, {"startTime": NOW - 1000})
    assert stats.total_bids == 3
    assert stats.unique_bidders == 2
    assert stats.average_bid_increment == 15
    assert stats.highest_bidder["id"] == "b3"
    assert stats.bid_frequency == 1.0
    assert auction_stats([]).total_bids == 0


def test_auction_title():
    assert auction_title({"product": {"title": "Wheat"}, "title": "Other"}) == "Wheat"
    assert auction_title({"title": "Rice"}) == "Rice"
    assert auction_title({}) == "Auction Item"


def test_view_follows_room_until_closed(store, make_settings):
    changes = []

    async def scenario():
        settings = make_settings()
        coordinator = BiddingCoordinator(StoreConnection(store), settings)
        view = RealtimeAuctionView(coordinator, "v1", {"id": "v1", "title": "Wheat", "startingBid": 100}, ASHA,
                                   on_change=lambda kind, state: changes.append(kind))
        async with view:
            assert view.state.is_connected is True
            assert view.state.is_loading is False
            assert view.state.metadata["title"] == "Wheat"
            assert [p["id"] for p in view.state.participants] == ["u-asha"]
            assert view.state.activity[0]["type"] == "join"

            other = BiddingCoordinator(StoreConnection(store), settings)
            await other.place_bid("v1", 100, RAVI)
            assert view.state.metadata["totalBids"] == 1
            assert [b["userId"] for b in view.state.bids] == ["u-ravi"]
            assert view.state.activity[0]["type"] == "bid"
        await other.place_bid("v1", 200, RAVI)
        return view

    view = asyncio.run(scenario())
    assert {"metadata", "bids", "participants", "activity"} <= set(changes)
    assert len(view.state.bids) == 1
    assert store.peek("participants/u-asha/isOnline") is False


def test_view_reports_initialization_errors(store, make_settings):
    async def scenario():
        coordinator = BiddingCoordinator(StoreConnection(store), make_settings())
        view = RealtimeAuctionView(coordinator, "v2", {"title": "no id"}, ASHA)
        await view.open()
        view.detach()
        return view.state

    state = asyncio.run(scenario())
    assert state.error == "Auction ID is required"
    assert state.is_loading is False
    assert state.metadata is None


def test_bidding_session(store, make_settings):
    async def scenario():
        coordinator = BiddingCoordinator(StoreConnection(store), make_settings())
        await coordinator.initialize_auction_room({"id": "v3", "startingBid": 100})
        with pytest.raises(AuthError):
            await BiddingSession(coordinator, "v3", None).place_bid(100)
        session = BiddingSession(coordinator, "v3", ASHA)
        with pytest.raises(ValidationError):
            await session.place_bid(0)
        with pytest.raises(BidTooLowError):
            await session.place_bid(10)
        assert session.error.startswith("Bid of 10.00 is below")
        assert session.is_placing is False
        bid_id = await session.place_bid(100)
        return session, bid_id, await session.get_total_bids()

    session, bid_id, total = asyncio.run(scenario())
    assert session.last_bid_id == bid_id
    assert session.error is None
    assert total == 1


def test_global_feed_merges_and_tags_entries(store, make_settings):
    updates = []

    async def scenario():
        coordinator = BiddingCoordinator(StoreConnection(store), make_settings())
        auctions = [{"id": "g1", "product": {"title": "Wheat"}}, {"id": "g2", "title": "Rice"}, {"title": "no id"}]
        for auction in auctions[:2]:
            await coordinator.initialize_auction_room({**auction, "startingBid": 100})
        feed = GlobalActivityFeed(coordinator, auctions, per_auction=2, limit=2, on_change=updates.append)
        feed.start()
        await coordinator.place_bid("g1", 100, ASHA)
        await coordinator.place_bid("g2", 200, RAVI)
        await coordinator.place_bid("g1", 150, ASHA)
        snapshot = list(feed.activity)
        feed.stop()
        await coordinator.place_bid("g2", 300, RAVI)
        return feed, snapshot

    feed, snapshot = asyncio.run(scenario())
    assert len(feed.auctions) == 2
    assert [(e["auctionId"], e["amount"]) for e in snapshot] == [("g1", 150), ("g2", 200)]
    assert snapshot[0]["auctionTitle"] == "Wheat"
    assert snapshot[0]["bidderName"] == "Asha Traders"
    assert snapshot[1]["auctionTitle"] == "Rice"
    assert feed.activity == snapshot
    assert updates[-1] == snapshot


def test_global_activity_subscription(store, make_settings):
    seen = []

    async def scenario():
        coordinator = BiddingCoordinator(StoreConnection(store), make_settings())
        await coordinator.initialize_auction_room({"id": "v4", "startingBid": 100})
        unsubscribe = coordinator.subscribe_to_global_activity(seen.append, limit=1)
        await coordinator.join_auction_room("v4", ASHA)
        await coordinator.place_bid("v4", 100, RAVI)
        unsubscribe()
        await coordinator.place_bid("v4", 200, RAVI)

    asyncio.run(scenario())
    assert seen[0] == []
    assert [e["type"] for e in seen[-1]] == ["bid"]
    assert seen[-1][0]["data"] == {"bidAmount": 100}
    assert all(len(entries) <= 1 for entries in seen)

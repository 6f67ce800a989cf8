"""Where each record lives in the real-time store."""
from aarath.realtime.store import join_path

AUCTIONS = "auctions"
GLOBAL_ACTIVITY = "activities"
TOTAL_PARTICIPANTS = "auctionMetadata/totalParticipants"


def room(auction_id) -> str:
    return join_path(AUCTIONS, auction_id)

def metadata(auction_id) -> str:
    return join_path(room(auction_id), "metadata")

def bids(auction_id) -> str:
    return join_path(room(auction_id), "bids")

def room_activity(auction_id) -> str:
    return join_path(room(auction_id), "activity")

def participants(auction_id, scope: str = "global") -> str:
    # The global pool is shared by every auction; "auction" scopes it to one room
    if scope == "auction":
        return join_path(room(auction_id), "participants")
    return "participants"

def participant(auction_id, user_id, scope: str = "global") -> str:
    return join_path(participants(auction_id, scope), user_id)

import asyncio
from fastapi import APIRouter, Body, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from aarath.core.db import get_db
from aarath.core.errors import AuthError, NotFoundError, ValidationError
from aarath.auth.dependencies import get_current_identity
from aarath.auth.utils import verify_identity_token
from aarath.auctions import paths
from aarath.auctions.archive import archive_bid, archived_bid_count
from aarath.auctions.coordinator import BiddingCoordinator
from aarath.auctions.views import RealtimeAuctionView
from aarath.backend.client import AuctionBackendClient
from aarath.realtime.connection import StoreConnection
from aarath.realtime.store import RealtimeStore, join_path

logger = structlog.get_logger()

router = APIRouter(prefix='/auctions', tags=['auctions'])

def get_store(request: Request) -> RealtimeStore:
    return request.app.state.store

async def get_coordinator(store: RealtimeStore = Depends(get_store)):
    connection = StoreConnection(store)
    try:
        yield BiddingCoordinator(connection)
    finally:
        await connection.close()

def get_backend_client() -> AuctionBackendClient:
    return AuctionBackendClient()

class BidIn(BaseModel):
    amount: float

async def _record_bid(coordinator: BiddingCoordinator, db: AsyncSession, auction_id: str, bid_id: str) -> dict | None:
    bid = await coordinator.connection.read(join_path(paths.bids(auction_id), bid_id))
    await archive_bid(db, auction_id, bid_id, bid)
    return bid


@router.get('/activity')
async def global_activity(limit: int | None = None, coordinator: BiddingCoordinator = Depends(get_coordinator)):
    return await coordinator.get_activity(limit=limit)

@router.post('/sync')
async def sync_active_auctions(coordinator: BiddingCoordinator = Depends(get_coordinator),
                               backend: AuctionBackendClient = Depends(get_backend_client)):
    auctions = await backend.list_active_auctions()
    initialized, failed = [], []
    for auction in auctions:
        try:
            await coordinator.initialize_auction_room(auction)
            initialized.append(str(auction["id"]))
        except ValidationError as exc:
            logger.warning("Skipping auction from backend", auction_id=str(auction.get("id")), error=exc.detail)
            failed.append({"id": str(auction.get("id")), "detail": exc.detail})
    return {"initialized": initialized, "failed": failed}

@router.post('/{auction_id}/room')
async def initialize_room(auction_id: str, body: dict = Body(...), coordinator: BiddingCoordinator = Depends(get_coordinator)):
    data = {**body, "id": body.get("id") or auction_id}
    if str(data["id"]) != auction_id:
        raise ValidationError("Auction id in body does not match the path")
    await coordinator.initialize_auction_room(data)
    room = await coordinator.get_auction_room(auction_id)
    return {"initialized": True, "metadata": room["metadata"]}

@router.get('/{auction_id}/room')
async def get_room(auction_id: str, coordinator: BiddingCoordinator = Depends(get_coordinator)):
    room = await coordinator.get_auction_room(auction_id)
    return {
        "metadata": room.get("metadata"),
        "total_bids": len(room.get("bids") or {}),
        "activity": await coordinator.get_activity(auction_id),
    }

@router.post('/{auction_id}/bids')
async def place_bid(auction_id: str, body: BidIn, coordinator: BiddingCoordinator = Depends(get_coordinator),
                    identity=Depends(get_current_identity), db: AsyncSession = Depends(get_db)):
    bid_id = await coordinator.place_bid(auction_id, body.amount, identity)
    await _record_bid(coordinator, db, auction_id, bid_id)
    room = await coordinator.get_auction_room(auction_id)
    return {"bid_id": bid_id, "amount": body.amount, "metadata": room["metadata"]}

@router.get('/{auction_id}/bids/count')
async def total_bids(auction_id: str, coordinator: BiddingCoordinator = Depends(get_coordinator)):
    return {"auction_id": auction_id, "total_bids": await coordinator.get_total_bids(auction_id)}

@router.get('/{auction_id}/bids/count/{user_id}')
async def user_bid_count(auction_id: str, user_id: str, coordinator: BiddingCoordinator = Depends(get_coordinator)):
    return {"auction_id": auction_id, "user_id": user_id,
            "bid_count": await coordinator.get_user_bid_count(auction_id, user_id)}

@router.post('/{auction_id}/reconcile')
async def reconcile(auction_id: str, coordinator: BiddingCoordinator = Depends(get_coordinator),
                    db: AsyncSession = Depends(get_db)):
    metadata = await coordinator.reconcile(auction_id)
    return {"metadata": metadata, "archived_bids": await archived_bid_count(db, auction_id)}

@router.get('/{auction_id}/activity')
async def room_activity(auction_id: str, limit: int | None = None, coordinator: BiddingCoordinator = Depends(get_coordinator)):
    return await coordinator.get_activity(auction_id, limit=limit)


# Live session

async def _pump(websocket: WebSocket, outbox: asyncio.Queue):
    while True:
        message = await outbox.get()
        if message is None:
            return
        try:
            await websocket.send_json(jsonable_encoder(message))
        except (WebSocketDisconnect, RuntimeError, OSError):
            return

@router.websocket('/{auction_id}/live')
async def live_auction(websocket: WebSocket, auction_id: str, token: str | None = None,
                       db: AsyncSession = Depends(get_db)):
    """Join on connect, stream room state, take bids. Dropping the socket fires the disconnect hooks."""
    try:
        identity = await verify_identity_token(token) if token else None
    except AuthError:
        identity = None
    if identity is None:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    connection = StoreConnection(websocket.app.state.store)
    coordinator = BiddingCoordinator(connection)
    outbox: asyncio.Queue = asyncio.Queue()

    def push(kind, state):
        outbox.put_nowait({"event": kind, "data": getattr(state, kind)})

    view = RealtimeAuctionView(coordinator, auction_id, on_change=push)
    sender = asyncio.create_task(_pump(websocket, outbox))
    graceful = False
    try:
        await coordinator.get_auction_room(auction_id)
        await coordinator.join_auction_room(auction_id, identity)
        await view.open()
        while True:
            message = await websocket.receive_json()
            action = message.get("action") if isinstance(message, dict) else None
            if action == "leave":
                graceful = True
                break
            if action != "bid":
                outbox.put_nowait({"event": "error", "data": {"detail": f"Unknown action {action!r}"}})
                continue
            try:
                bid_id = await coordinator.place_bid(auction_id, message.get("amount"), identity)
            except (ValidationError, NotFoundError) as exc:
                outbox.put_nowait({"event": "error", "data": {"detail": exc.detail}})
                continue
            await _record_bid(coordinator, db, auction_id, bid_id)
            outbox.put_nowait({"event": "bid_accepted", "data": {"bid_id": bid_id}})
    except WebSocketDisconnect:
        logger.info("Live session dropped", auction_id=auction_id, user_id=identity.uid)
    except NotFoundError as exc:
        outbox.put_nowait({"event": "error", "data": {"detail": exc.detail}})
        graceful = True
    finally:
        if graceful:
            await view.close()
        else:
            view.detach()
            connection.disconnect()
        await connection.close()
        outbox.put_nowait(None)
        await sender
    if graceful:
        await websocket.close()

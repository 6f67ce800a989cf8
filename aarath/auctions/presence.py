"""Participant presence: explicit join/leave plus server-side disconnect hooks.

Per participant the lifecycle is absent -> online -> offline -> online ...;
records are never removed. The offline -> online flip goes through a
transaction on ``isOnline`` so only one connection counts a given arrival.
"""
import structlog

from aarath.auctions import paths
from aarath.auctions.activity import ActivityLog, build_entry
from aarath.auctions.identity import UserIdentity
from aarath.core.errors import AuthError, NotFoundError
from aarath.realtime.connection import StoreConnection
from aarath.realtime.store import ABORT, SERVER_TIMESTAMP, increment, join_path

logger = structlog.get_logger()


class PresenceTracker:
    def __init__(self, connection: StoreConnection, activity: ActivityLog, participant_scope: str = "global"):
        self.connection = connection
        self.activity = activity
        self.participant_scope = participant_scope
        # auction id -> identity that joined it through this connection
        self._identities: dict[str, UserIdentity] = {}
        # participant paths this connection flipped online and still owns
        self._online_paths: set[str] = set()

    def identity_for(self, auction_id) -> UserIdentity | None:
        return self._identities.get(str(auction_id))

    async def join(self, auction_id, identity: UserIdentity | None) -> bool:
        if identity is None:
            raise AuthError("User must be authenticated to join auction")
        auction_id = str(auction_id)
        if not await self._room_exists(auction_id):
            raise NotFoundError(f"Auction room {auction_id} not found")
        user_name = identity.display_name
        path = paths.participant(auction_id, identity.uid, self.participant_scope)
        self._identities[auction_id] = identity

        existing = await self.connection.read(path)
        if existing and existing.get("isOnline"):
            await self.connection.update(path, {"userName": user_name, "lastSeen": SERVER_TIMESTAMP})
            logger.info("Participant already online", auction_id=auction_id, user_id=identity.uid)
        else:
            # Hooks go in before the flip so a crash right after it still ends offline
            self._online_paths.add(path)
            await self._install_disconnect_hooks(path)
            flip = await self.connection.transaction(join_path(path, "isOnline"),
                                                     lambda online: ABORT if online else True)
            if flip.committed:
                await self._mark_joined(auction_id, identity, path, existing)
            else:
                self._online_paths.discard(path)
                await self._remove_disconnect_hooks(path)
                await self.connection.update(path, {"lastSeen": SERVER_TIMESTAMP})

        await self.update_participant_count(auction_id)
        return True

    async def _mark_joined(self, auction_id: str, identity: UserIdentity, path: str, existing: dict | None) -> None:
        user_name = identity.display_name
        fields = {
            "userId": identity.uid,
            "userName": user_name,
            "lastSeen": SERVER_TIMESTAMP,
            # increment(0) keeps a bid count a concurrent bid may be raising
            "totalBids": increment(0),
        }
        if not existing or not existing.get("joinedAt"):
            fields["joinedAt"] = SERVER_TIMESTAMP
        await self.connection.update(path, fields)
        await self.connection.write(paths.TOTAL_PARTICIPANTS, increment(1))

        entry = build_entry("join", identity.uid, user_name, f"{user_name} joined the auction", auction_id=auction_id)
        await self.activity.add(paths.GLOBAL_ACTIVITY, entry)
        await self.activity.add(paths.room_activity(auction_id), entry)
        logger.info("Participant joined", auction_id=auction_id, user_id=identity.uid, user_name=user_name)

    async def leave(self, auction_id) -> None:
        """Graceful leave. Marks the participant offline; never raises."""
        auction_id = str(auction_id)
        identity = self._identities.pop(auction_id, None)
        if identity is None:
            return
        path = paths.participant(auction_id, identity.uid, self.participant_scope)
        try:
            flip = await self.connection.transaction(join_path(path, "isOnline"),
                                                     lambda online: False if online else ABORT)
            if flip.committed or flip.snapshot is False:
                await self.connection.update(path, {"lastSeen": SERVER_TIMESTAMP})
            if path in self._online_paths:
                self._online_paths.discard(path)
                await self._remove_disconnect_hooks(path)
            if flip.committed:
                await self.connection.write(paths.TOTAL_PARTICIPANTS, increment(-1))
            if await self._room_exists(auction_id):
                entry = build_entry("leave", identity.uid, identity.display_name,
                                    f"{identity.display_name} left the auction", auction_id=auction_id)
                await self.activity.add(paths.room_activity(auction_id), entry)
            logger.info("Participant left", auction_id=auction_id, user_id=identity.uid)
        except Exception:
            logger.exception("Error leaving auction room", auction_id=auction_id, user_id=identity.uid)

    async def _room_exists(self, auction_id: str) -> bool:
        return await self.connection.read(paths.metadata(auction_id)) is not None

    async def update_participant_count(self, auction_id) -> int | None:
        """Snapshot the participant collection size onto the room summary."""
        auction_id = str(auction_id)
        try:
            if not await self._room_exists(auction_id):
                return None
            count = len(await self.connection.read(paths.participants(auction_id, self.participant_scope)) or {})
            await self.connection.write(join_path(paths.metadata(auction_id), "totalParticipants"), count)
        except Exception:
            logger.exception("Error updating participant count", auction_id=auction_id)
            return None
        return count

    async def _install_disconnect_hooks(self, path: str) -> None:
        try:
            await self.connection.on_disconnect(path).update({"isOnline": False, "lastSeen": SERVER_TIMESTAMP})
            await self._sync_counter_hook()
        except Exception:
            logger.exception("Failed to register disconnect hooks", path=path)

    async def _remove_disconnect_hooks(self, path: str) -> None:
        try:
            await self.connection.on_disconnect(path).cancel()
            await self._sync_counter_hook()
        except Exception:
            logger.exception("Failed to cancel disconnect hooks", path=path)

    async def _sync_counter_hook(self) -> None:
        # One hook per connection, sized to every participant it holds online
        hook = self.connection.on_disconnect(paths.TOTAL_PARTICIPANTS)
        if self._online_paths:
            await hook.set(increment(-len(self._online_paths)))
        else:
            await hook.cancel()

"""One client's handle on the real-time store.

A connection owns its subscriptions, its disconnect hooks and a queue of
operations issued while the transport is down. Queued operations replay in
issue order once the connection comes back, and the awaitable returned to the
caller resolves only when the store has applied the operation.
"""
import asyncio
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, NamedTuple

import structlog

from aarath.core.errors import StoreError
from aarath.realtime.store import RealtimeStore

logger = structlog.get_logger()


class TransactionResult(NamedTuple):
    committed: bool
    snapshot: Any


class Subscription:
    """Handle returned by ``StoreConnection.subscribe``. Calling it unsubscribes."""

    def __init__(self, connection: "StoreConnection", path: str, callback: Callable[[Any], None]):
        self.path = path
        self.active = True
        self._connection = connection
        self._callback = callback
        self._listener_id: int | None = None

    def __call__(self) -> None:
        self.cancel()

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._connection._release(self)

    def _deliver(self, value: Any) -> None:
        if self.active and self._connection.connected:
            self._callback(value)


class OnDisconnect:
    """Writes the server performs on this connection's behalf once it drops."""

    def __init__(self, connection: "StoreConnection", path: str):
        self._connection = connection
        self._path = path

    async def set(self, value: Any) -> None:
        conn = self._connection
        await conn._dispatch(lambda: conn.store.add_disconnect_op(conn.id, self._path, value))

    async def update(self, fields: dict) -> None:
        conn = self._connection
        await conn._dispatch(lambda: conn.store.add_disconnect_op(conn.id, self._path, fields, fields=True))

    async def cancel(self) -> None:
        conn = self._connection
        await conn._dispatch(lambda: conn.store.cancel_disconnect_ops(conn.id, self._path))


class StoreConnection:
    def __init__(self, store: RealtimeStore, connection_id: str | None = None):
        self.store = store
        self.id = connection_id or uuid.uuid4().hex
        self.connected = True
        self.closed = False
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._replaying = False
        self._subscriptions: dict[int, Subscription] = {}

    # -- operations ----------------------------------------------------

    async def read(self, path) -> Any:
        return await self._dispatch(lambda: self.store.get(path))

    async def write(self, path, value: Any) -> None:
        await self._dispatch(lambda: self.store.set(path, value))

    async def update(self, path, fields: dict) -> None:
        await self._dispatch(lambda: self.store.update(path, fields))

    async def append(self, path, value: Any) -> str:
        return await self._dispatch(lambda: self.store.push(path, value))

    async def transaction(self, path, update_fn: Callable[[Any], Any]) -> TransactionResult:
        """Read-modify-write on one node, run by the server as a single step.

        ``update_fn`` receives a private copy of the current value and returns
        the replacement, or ``ABORT`` to leave the node untouched.
        """
        committed, snapshot = await self._dispatch(lambda: self.store.transact(path, update_fn))
        return TransactionResult(committed, snapshot)

    def subscribe(self, path, callback: Callable[[Any], None]) -> Subscription:
        if self.closed:
            raise StoreError("Connection is closed")
        sub = Subscription(self, path, callback)
        sub._listener_id = self.store.listen(path, sub._deliver, emit_current=self.connected)
        self._subscriptions[sub._listener_id] = sub
        return sub

    def on_disconnect(self, path) -> OnDisconnect:
        return OnDisconnect(self, path)

    def new_key(self) -> str:
        """Push id for a child the caller writes itself, e.g. inside a transaction."""
        return self.store.push_id()

    def server_time(self) -> int:
        return self.store.current_time()

    # -- transport state -----------------------------------------------

    def disconnect(self) -> None:
        """Drop the transport without a goodbye; the server runs this connection's hooks."""
        if not self.connected:
            return
        self.connected = False
        fired = self.store.fire_disconnect(self.id)
        logger.info("Store connection dropped", connection_id=self.id, hooks_fired=fired)

    async def reconnect(self) -> None:
        if self.closed:
            raise StoreError("Connection is closed")
        if self.connected:
            return
        self.connected = True
        logger.info("Store connection restored", connection_id=self.id, queued=len(self._pending))
        await self._replay()
        for listener_id, sub in list(self._subscriptions.items()):
            if sub.active:
                self.store.emit_current(listener_id)

    async def close(self) -> None:
        if self.closed:
            return
        self.disconnect()
        self.closed = True
        for sub in list(self._subscriptions.values()):
            sub.cancel()
        while self._pending:
            _, fut = self._pending.popleft()
            if not fut.done():
                fut.set_exception(StoreError("Connection closed before the operation was sent"))

    # -- internals -----------------------------------------------------

    async def _dispatch(self, op: Callable[[], Awaitable[Any]]) -> Any:
        if self.closed:
            raise StoreError("Connection is closed")
        if self.connected and not self._pending and not self._replaying:
            return await op()
        fut = asyncio.get_running_loop().create_future()
        self._pending.append((op, fut))
        return await fut

    async def _replay(self) -> None:
        self._replaying = True
        try:
            while self._pending and self.connected:
                op, fut = self._pending.popleft()
                if fut.done():
                    continue
                try:
                    result = await op()
                except Exception as exc:
                    if not fut.done():
                        fut.set_exception(exc)
                else:
                    if not fut.done():
                        fut.set_result(result)
        finally:
            self._replaying = False

    def _release(self, sub: Subscription) -> None:
        if sub._listener_id is not None:
            self.store.unlisten(sub._listener_id)
            self._subscriptions.pop(sub._listener_id, None)

"""Server side of the real-time store.

The store is a path-addressed JSON tree held by the server process. Clients
never touch it directly; they go through a ``StoreConnection``. Every
coroutine here yields to the event loop once before doing its work, and the
work itself (resolve, apply, notify) runs without awaiting, so each call is
atomic with respect to other coroutines on the loop.
"""
import asyncio
import copy
import itertools
import time
from typing import Any, Callable

import structlog

from aarath.realtime.push_id import PushIdGenerator

logger = structlog.get_logger()

SERVER_TIMESTAMP = {".sv": "timestamp"}

ABORT = object()

_INVALID_KEY_CHARS = set(".#$[]")


def increment(delta: int | float) -> dict:
    """Server value that adds ``delta`` to whatever number is stored at apply time."""
    return {".sv": {"increment": delta}}


def split_path(path: str | tuple | list) -> tuple[str, ...]:
    if isinstance(path, (tuple, list)):
        parts = tuple(str(p) for p in path)
    else:
        parts = tuple(p for p in str(path).split("/") if p)
    for part in parts:
        if not part or _INVALID_KEY_CHARS.intersection(part):
            raise ValueError(f"Invalid path segment {part!r} in {path!r}")
    return parts


def join_path(*parts) -> str:
    return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _get_node(root: dict, parts: tuple[str, ...]) -> Any:
    node: Any = root
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _set_node(root: dict, parts: tuple[str, ...], value: Any) -> None:
    node = root
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[part] = child
        node = child
    if value is None:
        node.pop(parts[-1], None)
    else:
        node[parts[-1]] = value


def _related(a: tuple[str, ...], b: tuple[str, ...]) -> bool:
    n = min(len(a), len(b))
    return a[:n] == b[:n]


class RealtimeStore:
    """Authoritative tree with change listeners and per-connection disconnect hooks."""

    def __init__(self, clock: Callable[[], int] | None = None):
        self._root: dict = {}
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last_ts = 0
        self._listeners: dict[int, tuple[tuple[str, ...], Callable[[Any], None]]] = {}
        self._listener_ids = itertools.count(1)
        # connection id -> {hook path -> [(target path, value), ...]}
        self._hooks: dict[str, dict[tuple[str, ...], list[tuple[tuple[str, ...], Any]]]] = {}
        self.push_id = PushIdGenerator(clock=self._clock)

    def now(self) -> int:
        """Server clock in epoch ms, strictly increasing across calls."""
        ts = self._clock()
        if ts <= self._last_ts:
            ts = self._last_ts + 1
        self._last_ts = ts
        return ts

    def current_time(self) -> int:
        """Server clock without advancing it."""
        return max(self._clock(), self._last_ts)

    # -- reads ---------------------------------------------------------

    def peek(self, path) -> Any:
        return copy.deepcopy(_get_node(self._root, split_path(path)))

    async def get(self, path) -> Any:
        await asyncio.sleep(0)
        return self.peek(path)

    # -- writes --------------------------------------------------------

    async def set(self, path, value: Any) -> None:
        parts = self._writable(path)
        await asyncio.sleep(0)
        self._apply([(parts, value)])

    async def update(self, path, fields: dict) -> None:
        base = split_path(path)
        changes = [(base + split_path(key), value) for key, value in fields.items()]
        for parts, _ in changes:
            self._writable(parts)
        await asyncio.sleep(0)
        self._apply(changes)

    async def push(self, path, value: Any) -> str:
        parts = self._writable(path)
        await asyncio.sleep(0)
        key = self.push_id()
        self._apply([(parts + (key,), value)])
        return key

    async def transact(self, path, update_fn: Callable[[Any], Any]) -> tuple[bool, Any]:
        """Read, update and write one node in a single step.

        ``update_fn`` gets a private copy of the current value and returns the
        replacement, or ``ABORT`` to leave the node alone. Nothing else runs on
        the loop between the read and the write. Returns ``(committed, value)``:
        the resolved value on commit, the untouched current value on abort.
        Exceptions from ``update_fn`` propagate and nothing is written.
        """
        parts = self._writable(path)
        await asyncio.sleep(0)
        current = _get_node(self._root, parts)
        candidate = update_fn(copy.deepcopy(current))
        if candidate is ABORT:
            return False, copy.deepcopy(current)
        self._apply([(parts, candidate)])
        return True, copy.deepcopy(_get_node(self._root, parts))

    # -- listeners -----------------------------------------------------

    def listen(self, path, callback: Callable[[Any], None], emit_current: bool = False) -> int:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = (split_path(path), callback)
        if emit_current:
            self.emit_current(listener_id)
        return listener_id

    def unlisten(self, listener_id: int) -> None:
        self._listeners.pop(listener_id, None)

    def emit_current(self, listener_id: int) -> None:
        entry = self._listeners.get(listener_id)
        if entry is None:
            return
        parts, callback = entry
        self._emit(callback, copy.deepcopy(_get_node(self._root, parts)), parts)

    # -- disconnect hooks ----------------------------------------------

    async def add_disconnect_op(self, connection_id: str, path, value: Any, fields: bool = False) -> None:
        base = self._writable(path)
        if fields:
            changes = [(base + split_path(k), v) for k, v in value.items()]
        else:
            changes = [(base, value)]
        await asyncio.sleep(0)
        self._hooks.setdefault(connection_id, {})[base] = changes

    async def cancel_disconnect_ops(self, connection_id: str, path) -> None:
        base = split_path(path)
        await asyncio.sleep(0)
        hooks = self._hooks.get(connection_id, {})
        for key in [k for k in hooks if k[:len(base)] == base]:
            del hooks[key]

    def fire_disconnect(self, connection_id: str) -> int:
        """Run and forget every hook the connection registered. Returns how many fired."""
        hooks = self._hooks.pop(connection_id, {})
        changes = [change for ops in hooks.values() for change in ops]
        if changes:
            self._apply(changes)
            logger.info("Disconnect hooks fired", connection_id=connection_id, hooks=len(hooks))
        return len(hooks)

    def pending_disconnect_ops(self, connection_id: str) -> list[str]:
        return ["/".join(p) for p in self._hooks.get(connection_id, {})]

    # -- internals -----------------------------------------------------

    @staticmethod
    def _writable(path) -> tuple[str, ...]:
        parts = split_path(path)
        if not parts:
            raise ValueError("Cannot write to the store root")
        return parts

    def _resolve(self, value: Any, parts: tuple[str, ...], ts: int) -> Any:
        if isinstance(value, dict):
            if set(value) == {".sv"}:
                sv = value[".sv"]
                if sv == "timestamp":
                    return ts
                if isinstance(sv, dict) and "increment" in sv:
                    current = _get_node(self._root, parts)
                    return (current if _is_number(current) else 0) + sv["increment"]
                raise ValueError(f"Unknown server value {sv!r}")
            return {k: self._resolve(v, parts + (str(k),), ts) for k, v in value.items() if v is not None}
        return copy.deepcopy(value)

    def _apply(self, changes: list[tuple[tuple[str, ...], Any]]) -> None:
        affected = [
            (lid, lpath, cb, copy.deepcopy(_get_node(self._root, lpath)))
            for lid, (lpath, cb) in self._listeners.items()
            if any(_related(lpath, parts) for parts, _ in changes)
        ]
        ts = self.now()
        for parts, value in changes:
            _set_node(self._root, parts, self._resolve(value, parts, ts))
        for lid, lpath, cb, before in affected:
            if lid not in self._listeners:
                continue
            after = _get_node(self._root, lpath)
            if after != before:
                self._emit(cb, copy.deepcopy(after), lpath)

    @staticmethod
    def _emit(callback: Callable[[Any], None], value: Any, parts: tuple[str, ...]) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Store listener failed", path="/".join(parts))

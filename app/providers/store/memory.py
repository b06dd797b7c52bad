"""
In-memory realtime store

Process-local tree store with the same observable behaviour as the hosted
realtime database: last write wins, whole-value callbacks delivered on the
event loop, coalescing of intermediate values for slow subscribers.

Used for development (two identities in one process), and by the tests.
Supports simulated latency and a simulated offline mode.
"""

import asyncio
import copy
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List

from ..base.store_provider import (
    KeyValueStore,
    StoreSubscription,
    ChangeCallback,
    split_path,
    paths_overlap,
)
from app.services.call_errors import ConnectivityError

logger = logging.getLogger(__name__)


@dataclass
class _Subscriber:
    path: str
    callback: ChangeCallback
    subscription: StoreSubscription
    loop: asyncio.AbstractEventLoop
    scheduled: bool = False


class InMemoryStore(KeyValueStore):
    """Tree-structured in-process store"""

    def __init__(self, latency: float = 0.0, **_options):
        super().__init__()
        self.name = "memory"
        self.display_name = "In-memory store"
        self.latency = latency
        self.online = True
        self._root: Dict[str, Any] = {}
        self._subscribers: List[_Subscriber] = []
        self._push_seq = itertools.count()
        self.write_count = 0

    # ── Simulation controls ──────────────────────────────────────────────────

    def set_online(self, online: bool) -> None:
        """Simulate losing/regaining the connection (writes fail while offline)"""
        self.online = online
        logger.info(f"In-memory store {'online' if online else 'offline'}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def snapshot(self, path: str = "") -> Any:
        """Synchronous read for diagnostics and tests"""
        return copy.deepcopy(self._read(path))

    # ── KeyValueStore ────────────────────────────────────────────────────────

    async def get(self, path: str) -> Any:
        await self._round_trip()
        return copy.deepcopy(self._read(path))

    async def set(self, path: str, value: Any) -> None:
        await self._round_trip()
        self._write(path, copy.deepcopy(value))
        self.write_count += 1
        self._notify(path)

    async def push(self, path: str, value: Any) -> str:
        key = f"{int(time.time() * 1000):013d}{next(self._push_seq):06d}"
        await self.set(f"{path.rstrip('/')}/{key}", value)
        return key

    def subscribe(self, path: str, callback: ChangeCallback) -> StoreSubscription:
        subscription = StoreSubscription(path, self._remove_subscription)
        entry = _Subscriber(
            path=path,
            callback=callback,
            subscription=subscription,
            loop=asyncio.get_running_loop(),
        )
        self._subscribers.append(entry)
        self._schedule(entry)
        return subscription

    async def close(self) -> None:
        for entry in list(self._subscribers):
            entry.subscription.unsubscribe()

    # ── Internals ────────────────────────────────────────────────────────────

    async def _round_trip(self):
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)
        if not self.online:
            raise ConnectivityError("store is offline")

    def _read(self, path: str) -> Any:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        if isinstance(node, dict) and not node:
            return None
        return node

    def _write(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        if value is None or (isinstance(value, dict) and not value):
            self._delete(parts)
            return

        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _delete(self, parts: List[str]) -> None:
        trail = [self._root]
        node = self._root
        for part in parts[:-1]:
            node = node.get(part)
            if not isinstance(node, dict):
                return
            trail.append(node)
        node.pop(parts[-1], None)

        # Prune parents left empty
        for depth in range(len(parts) - 1, 0, -1):
            parent = trail[depth - 1]
            if not trail[depth]:
                parent.pop(parts[depth - 1], None)

    def _notify(self, written_path: str) -> None:
        for entry in list(self._subscribers):
            if paths_overlap(entry.path, written_path):
                self._schedule(entry)

    def _schedule(self, entry: _Subscriber) -> None:
        # One pending delivery per subscriber: it reads the latest value when it runs
        if entry.scheduled:
            return
        entry.scheduled = True
        entry.loop.call_soon(self._deliver, entry)

    def _deliver(self, entry: _Subscriber) -> None:
        entry.scheduled = False
        if not entry.subscription.active:
            return
        value = copy.deepcopy(self._read(entry.path))
        try:
            entry.callback(value)
        except Exception as e:
            logger.error(f"Subscriber callback for '{entry.path}' failed: {e}", exc_info=True)

    def _remove_subscription(self, subscription: StoreSubscription) -> None:
        self._subscribers = [e for e in self._subscribers if e.subscription is not subscription]

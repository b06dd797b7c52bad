"""
Key-Value Store Provider Base Class
Abstract interface for the shared realtime store used for signaling,
presence and conversations (last-write-wins, path addressed, no transactions)
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
import logging

logger = logging.getLogger(__name__)

# Called with the whole value now stored at the subscribed path (None when empty)
ChangeCallback = Callable[[Any], None]


def split_path(path: str) -> list:
    """'calls/b1' -> ['calls', 'b1']; leading/trailing slashes are ignored"""
    return [part for part in path.strip("/").split("/") if part]


def paths_overlap(a: str, b: str) -> bool:
    """True when one path is an ancestor of (or equal to) the other"""
    pa, pb = split_path(a), split_path(b)
    n = min(len(pa), len(pb))
    return pa[:n] == pb[:n]


class StoreSubscription:
    """
    Handle returned by KeyValueStore.subscribe().

    Owned by whoever subscribed; unsubscribe() is idempotent.
    """

    def __init__(self, path: str, on_unsubscribe: Optional[Callable[["StoreSubscription"], None]] = None):
        self.path = path
        self._on_unsubscribe = on_unsubscribe
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_unsubscribe:
            self._on_unsubscribe(self)
            self._on_unsubscribe = None


class KeyValueStore(ABC):
    """
    Abstract base class for store providers.

    Paths look like realtime-database paths: ``calls/b1``, ``users``,
    ``private_messages/a1_b1``. Writing ``None`` deletes the value.

    Subscribers are notified for writes at their path, below it or above it,
    and always receive the whole value at their own path. The first callback
    (current value) and all later ones are delivered asynchronously on the
    event loop. Delivery may coalesce intermediate values: a slow subscriber
    is only guaranteed to eventually observe the latest value.

    Implementations raise ConnectivityError when the store cannot be reached.
    """

    def __init__(self):
        self.name = "unknown"
        self.display_name = "Generic Store"

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Read the value at path (None when empty)"""
        pass

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at path (None deletes)"""
        pass

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """
        Append value under path with a generated, time-ordered child key.

        Returns:
            str: the generated child key
        """
        pass

    @abstractmethod
    def subscribe(self, path: str, callback: ChangeCallback) -> StoreSubscription:
        """
        Subscribe to changes at path.

        Returns:
            StoreSubscription: handle used to stop the subscription
        """
        pass

    async def close(self) -> None:
        """Release connections/listener threads (optional)"""
        return None

    def get_info(self) -> dict:
        """Provider information for status endpoints"""
        return {"name": self.name, "display_name": self.display_name}

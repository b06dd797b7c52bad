"""
Notification Channel

Thin layer over the realtime store used as the call-signaling channel:
every user owns a one-slot mailbox at ``calls/{uid}`` holding the latest
CallSignal written to them. Writes overwrite (no queue), subscriptions are
broadcast, and only the latest value is guaranteed to be observed.

Wire record (shared with the browser client):
    {"type": "offer"|"answer"|"decline", "signal": <payload>, "from": <uid>, "timestamp": <ms>}
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from app.providers.base import KeyValueStore, StoreSubscription

logger = logging.getLogger(__name__)

CALLS_ROOT = "calls"


def now_ms() -> int:
    return int(time.time() * 1000)


class SignalKind(Enum):
    OFFER = "offer"
    ANSWER = "answer"
    DECLINE = "decline"


@dataclass(frozen=True)
class CallSignal:
    """A single record in a user's signaling mailbox"""

    kind: SignalKind
    from_user_id: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[int] = None

    @classmethod
    def offer(cls, from_user_id: str, payload: Dict[str, Any], created_at: Optional[int] = None) -> "CallSignal":
        return cls(SignalKind.OFFER, from_user_id, payload, created_at if created_at is not None else now_ms())

    @classmethod
    def answer(cls, from_user_id: str, payload: Dict[str, Any]) -> "CallSignal":
        return cls(SignalKind.ANSWER, from_user_id, payload)

    @classmethod
    def decline(cls, from_user_id: str) -> "CallSignal":
        return cls(SignalKind.DECLINE, from_user_id)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"type": self.kind.value, "from": self.from_user_id}
        if self.payload is not None:
            record["signal"] = self.payload
        if self.created_at is not None:
            record["timestamp"] = self.created_at
        return record

    @classmethod
    def from_record(cls, record: Any) -> "CallSignal":
        """
        Parse a wire record.

        Raises:
            ValueError: when the record is not a valid call signal
        """
        if not isinstance(record, dict):
            raise ValueError(f"call signal must be an object, got {type(record).__name__}")

        try:
            kind = SignalKind(record.get("type"))
        except ValueError:
            raise ValueError(f"unknown call signal type: {record.get('type')!r}")

        sender = record.get("from")
        if not sender or not isinstance(sender, str):
            raise ValueError("call signal has no sender")

        payload = record.get("signal")
        if kind is not SignalKind.DECLINE and not isinstance(payload, dict):
            raise ValueError(f"{kind.value} signal has no payload")

        created_at = record.get("timestamp")
        if created_at is not None and not isinstance(created_at, (int, float)):
            created_at = None

        return cls(
            kind=kind,
            from_user_id=sender,
            payload=payload if kind is not SignalKind.DECLINE else None,
            created_at=int(created_at) if created_at is not None else None,
        )

    def is_stale(self, max_age_seconds: float, now: Optional[int] = None) -> bool:
        """True for an offer older than max_age_seconds (signals without a timestamp never are)"""
        if self.created_at is None:
            return False
        return ((now if now is not None else now_ms()) - self.created_at) > max_age_seconds * 1000


SignalCallback = Callable[[Optional[CallSignal]], None]


class NotificationChannel:
    """
    publish / subscribe / clear over per-recipient mailbox keys.

    Store failures surface as ConnectivityError from publish() and clear().
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def call_key(uid: str) -> str:
        return f"{CALLS_ROOT}/{uid}"

    async def publish(self, key: str, signal: Optional[CallSignal]) -> None:
        """Overwrite the value at key"""
        await self.store.set(key, signal.to_record() if signal is not None else None)
        if signal is not None:
            logger.debug(f"Published {signal.kind.value} from {signal.from_user_id} to {key}")
        else:
            logger.debug(f"Cleared {key}")

    async def clear(self, key: str) -> None:
        await self.publish(key, None)

    def subscribe(self, key: str, on_change: SignalCallback) -> StoreSubscription:
        """
        Subscribe to key; on_change(signal | None) fires with the current value,
        then on every delivered change. Unparseable records are logged and skipped.
        """

        def _on_value(record: Any) -> None:
            if record is None:
                on_change(None)
                return
            try:
                signal = CallSignal.from_record(record)
            except ValueError as e:
                logger.warning(f"Ignoring invalid call data at {key}: {e}")
                return
            on_change(signal)

        return self.store.subscribe(key, _on_value)

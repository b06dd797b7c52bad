"""
Notification Channel Tests

CallSignal wire records and the per-recipient mailbox operations
"""

import pytest

from app.services.signaling import CallSignal, NotificationChannel, SignalKind, now_ms
from app.providers.store.memory import InMemoryStore
from app.services.call_errors import ConnectivityError

from tests.fakes import settle

OFFER = {"type": "offer", "sdp": "v=0\r\n"}


class TestCallSignal:
    def test_offer_gets_timestamp(self):
        signal = CallSignal.offer("a1", OFFER)
        assert signal.kind is SignalKind.OFFER
        assert abs(signal.created_at - now_ms()) < 1000

    def test_answer_and_decline_have_no_timestamp(self):
        assert CallSignal.answer("b1", {"type": "answer", "sdp": "x"}).created_at is None
        assert CallSignal.decline("b1").created_at is None

    def test_offer_record(self):
        record = CallSignal.offer("a1", OFFER, created_at=1700000000000).to_record()
        assert record == {"type": "offer", "from": "a1", "signal": OFFER, "timestamp": 1700000000000}

    def test_decline_record_has_no_signal(self):
        assert CallSignal.decline("b1").to_record() == {"type": "decline", "from": "b1"}

    def test_from_record(self):
        signal = CallSignal.from_record({"type": "answer", "from": "b1", "signal": {"type": "answer", "sdp": "x"}})
        assert signal.kind is SignalKind.ANSWER
        assert signal.from_user_id == "b1"
        assert signal.payload == {"type": "answer", "sdp": "x"}

    def test_from_record_drops_decline_payload(self):
        signal = CallSignal.from_record({"type": "decline", "from": "b1", "signal": {"junk": True}})
        assert signal.payload is None

    @pytest.mark.parametrize(
        "record",
        [
            None,
            "offer",
            {"type": "ring", "from": "a1"},
            {"type": "offer", "signal": OFFER},
            {"type": "offer", "from": "a1"},
            {"type": "answer", "from": "b1", "signal": "sdp"},
        ],
    )
    def test_invalid_records(self, record):
        with pytest.raises(ValueError):
            CallSignal.from_record(record)

    def test_non_numeric_timestamp_ignored(self):
        signal = CallSignal.from_record({"type": "offer", "from": "a1", "signal": OFFER, "timestamp": "soon"})
        assert signal.created_at is None

    def test_staleness(self):
        now = 1_700_000_060_000
        old = CallSignal.offer("a1", OFFER, created_at=now - 31_000)
        fresh = CallSignal.offer("a1", OFFER, created_at=now - 29_000)

        assert old.is_stale(30, now=now) is True
        assert fresh.is_stale(30, now=now) is False
        assert CallSignal.decline("b1").is_stale(30, now=now) is False


class TestNotificationChannel:
    def test_call_key(self):
        assert NotificationChannel.call_key("b1") == "calls/b1"

    @pytest.mark.asyncio
    async def test_publish_and_subscribe(self):
        store = InMemoryStore()
        channel = NotificationChannel(store)
        seen = []
        channel.subscribe("calls/b1", seen.append)
        await settle()

        await channel.publish("calls/b1", CallSignal.offer("a1", OFFER))
        await settle()

        assert seen[0] is None
        assert seen[-1].kind is SignalKind.OFFER
        assert seen[-1].from_user_id == "a1"

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryStore()
        channel = NotificationChannel(store)
        await channel.publish("calls/b1", CallSignal.decline("a1"))

        await channel.clear("calls/b1")

        assert store.snapshot("calls/b1") is None

    @pytest.mark.asyncio
    async def test_invalid_record_skipped(self):
        store = InMemoryStore()
        channel = NotificationChannel(store)
        seen = []
        channel.subscribe("calls/b1", seen.append)
        await settle()

        await store.set("calls/b1", {"type": "ring"})
        await settle()

        assert seen == [None]

    @pytest.mark.asyncio
    async def test_publish_failure(self):
        store = InMemoryStore()
        store.set_online(False)
        channel = NotificationChannel(store)

        with pytest.raises(ConnectivityError):
            await channel.publish("calls/b1", CallSignal.decline("a1"))

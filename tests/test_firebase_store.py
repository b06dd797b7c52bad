"""
Firebase Realtime Database store tests

The firebase-admin SDK is mocked: db.reference() returns a MagicMock ref and
listener events are fed in by hand.
"""

from unittest.mock import MagicMock, patch

import pytest
from firebase_admin.exceptions import FirebaseError
from google.auth.exceptions import RefreshError

from app.providers.store.firebase import FirebaseRealtimeStore, _apply_event
from app.services.call_errors import ConnectivityError
from app.services.call_service import CallService, CallState
from app.services.signaling import NotificationChannel

from tests.fakes import FakeMediaProvider, settle


@pytest.fixture
def ref():
    ref = MagicMock()
    with patch("app.providers.store.firebase.get_firebase_app", return_value=MagicMock()), patch(
        "app.providers.store.firebase.db.reference", return_value=ref
    ) as reference:
        ref.reference = reference
        yield ref


@pytest.fixture
def firebase_store():
    return FirebaseRealtimeStore(database_url="https://demo.firebaseio.com")


def event(event_type, path, data):
    return MagicMock(event_type=event_type, path=path, data=data)


class TestApplyEvent:
    def test_root_put_replaces(self):
        assert _apply_event({"a": 1}, "/", {"b": 2}, merge=False) == {"b": 2}

    def test_root_patch_merges(self):
        assert _apply_event({"a": 1, "b": 2}, "/", {"b": None, "c": 3}, merge=True) == {"a": 1, "c": 3}

    def test_nested_put(self):
        assert _apply_event({"a1": {"online": True}}, "/b2", {"online": False}, merge=False) == {
            "a1": {"online": True},
            "b2": {"online": False},
        }

    def test_nested_delete_empties_snapshot(self):
        assert _apply_event({"b2": {"online": True}}, "/b2", None, merge=False) is None

    def test_root_delete(self):
        assert _apply_event({"type": "offer"}, "/", None, merge=False) is None


class TestFirebaseStore:
    @pytest.mark.asyncio
    async def test_get(self, firebase_store, ref):
        ref.get.return_value = {"type": "offer", "from": "a1"}

        assert await firebase_store.get("calls/b2") == {"type": "offer", "from": "a1"}
        assert ref.reference.call_args.args[0] == "/calls/b2"

    @pytest.mark.asyncio
    async def test_set_and_delete(self, firebase_store, ref):
        await firebase_store.set("calls/b2", {"type": "answer"})
        ref.set.assert_called_once_with({"type": "answer"})

        await firebase_store.set("calls/b2", None)
        ref.delete.assert_called_once()

    @pytest.mark.asyncio
    async def test_push_returns_key(self, firebase_store, ref):
        ref.push.return_value = MagicMock(key="-NxYz")
        assert await firebase_store.push("private_messages/a1_b2", {"text": "hi"}) == "-NxYz"

    @pytest.mark.asyncio
    async def test_sdk_error_is_connectivity_error(self, firebase_store, ref):
        ref.set.side_effect = FirebaseError("unavailable", "backend down")
        with pytest.raises(ConnectivityError):
            await firebase_store.set("users/a1", {"online": True})

    @pytest.mark.asyncio
    async def test_missing_database_url(self):
        store = FirebaseRealtimeStore()
        store.database_url = ""
        with pytest.raises(ConnectivityError):
            await store.get("users")

    @pytest.mark.asyncio
    async def test_invalid_database_url_is_connectivity_error(self, firebase_store, ref):
        ref.set.side_effect = ValueError("Invalid database URL")
        with pytest.raises(ConnectivityError):
            await firebase_store.set("calls/b1", {"type": "offer"})

    @pytest.mark.asyncio
    async def test_credential_refresh_error_is_connectivity_error(self, firebase_store, ref):
        ref.get.side_effect = RefreshError("invalid_grant")
        with pytest.raises(ConnectivityError):
            await firebase_store.get("users")

    @pytest.mark.asyncio
    async def test_app_initialization_failure(self):
        store = FirebaseRealtimeStore(database_url="not-a-url")
        with patch("app.providers.store.firebase.get_firebase_app", side_effect=ValueError("Invalid database URL")):
            with pytest.raises(ConnectivityError):
                await store.get("users")
            subscription = store.subscribe("calls/a1", lambda value: None)
        assert subscription.active is True

    @pytest.mark.asyncio
    async def test_call_setup_torn_down_on_sdk_error(self, firebase_store, ref):
        media = FakeMediaProvider()
        service = CallService("a1", NotificationChannel(firebase_store), media)
        service.start()
        ref.delete.side_effect = ValueError("Invalid database URL")

        result = await service.start_call("b1")

        assert result["error"] == "connectivity_error"
        assert service.state is CallState.IDLE
        assert media.streams[0].stopped is True


class TestFirebaseSubscriptions:
    @pytest.mark.asyncio
    async def test_events_delivered_on_loop(self, firebase_store, ref):
        received = []
        firebase_store.subscribe("calls/b2", received.append)
        on_event = ref.listen.call_args.args[0]

        on_event(event("put", "/", {"type": "offer", "from": "a1"}))
        await settle()
        on_event(event("patch", "/", {"signal": {"type": "offer", "sdp": "v=0"}}))
        await settle()

        assert received == [
            {"type": "offer", "from": "a1"},
            {"type": "offer", "from": "a1", "signal": {"type": "offer", "sdp": "v=0"}},
        ]

    @pytest.mark.asyncio
    async def test_burst_coalesced(self, firebase_store, ref):
        received = []
        firebase_store.subscribe("calls/b2", received.append)
        on_event = ref.listen.call_args.args[0]

        on_event(event("put", "/", {"type": "offer"}))
        on_event(event("put", "/", None))
        await settle()

        assert received == [None]

    @pytest.mark.asyncio
    async def test_no_delivery_after_unsubscribe(self, firebase_store, ref):
        received = []
        subscription = firebase_store.subscribe("users", received.append)
        on_event = ref.listen.call_args.args[0]

        subscription.unsubscribe()
        on_event(event("put", "/", {"a1": {"online": True}}))
        await settle()

        assert received == []

    @pytest.mark.asyncio
    async def test_listen_failure_keeps_handle(self, firebase_store, ref):
        ref.listen.side_effect = FirebaseError("unavailable", "backend down")
        subscription = firebase_store.subscribe("users", lambda value: None)
        assert subscription.active is True

    @pytest.mark.asyncio
    async def test_close_releases_listeners(self, firebase_store, ref):
        registration = MagicMock()
        ref.listen.return_value = registration
        firebase_store.subscribe("users", lambda value: None)
        await firebase_store.get("users")

        with patch("app.providers.store.firebase.firebase_admin.delete_app") as delete_app:
            await firebase_store.close()

        registration.close.assert_called_once()
        delete_app.assert_called_once()

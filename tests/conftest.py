"""
Pytest configuration and shared fixtures for PeerChat tests

Two call services share one in-memory store so they can talk to each other;
capture devices and the peer transport are replaced by the doubles in
tests/fakes.py.
"""

import json
from typing import List, Optional
from unittest.mock import Mock

import pytest

from app.providers.store.memory import InMemoryStore
from app.services.call_service import CallService
from app.services.signaling import NotificationChannel
from tests.fakes import EventRecorder, FakeMediaProvider, FakePeerNetwork


@pytest.fixture
def store():
    """Shared in-memory realtime store"""
    return InMemoryStore()


@pytest.fixture
def peer_network():
    return FakePeerNetwork()


@pytest.fixture
def make_call_service(store, peer_network):
    """
    Build call services bound to the shared store and fake transport.

    Usage: service = make_call_service("a1", timeout=0.2, media=FakeMediaProvider())
    """
    created: List[CallService] = []

    def _make(uid: str, timeout: float = 30.0, media: Optional[FakeMediaProvider] = None, names=None):
        names = names or {}
        service = CallService(
            uid,
            NotificationChannel(store),
            media or FakeMediaProvider(),
            adapter_factory=peer_network.factory,
            call_timeout=timeout,
            name_lookup=names.get,
        )
        service.recorder = EventRecorder()
        service.add_listener(service.recorder)
        service.start()
        created.append(service)
        return service

    yield _make


@pytest.fixture
def temp_preferences(tmp_path):
    """
    Create temporary preferences.json file for testing

    Returns:
        Path to temporary preferences file
    """
    prefs_file = tmp_path / "preferences.json"
    prefs_data = {
        "identity": {"uid": "a1", "display_name": "Alice", "photo_url": "https://example.com/alice.png"},
        "store": {"backend": "memory"},
        "media": {"backend": "synthetic", "width": 1280, "height": 720},
        "calls": {"timeout_seconds": 45},
        "ui": {"language": "es"},
    }
    prefs_file.write_text(json.dumps(prefs_data, indent=2))
    return prefs_file


@pytest.fixture
def mock_websocket_manager():
    """WebSocket manager double recording broadcasts"""
    manager = Mock()
    manager.broadcasts = []

    async def broadcast(message_type, data):
        manager.broadcasts.append((message_type, data))

    manager.broadcast = Mock(side_effect=broadcast)
    manager.schedule_broadcast = Mock(side_effect=lambda t, d: manager.broadcasts.append((t, d)))
    return manager


# Pytest configuration hooks
def pytest_configure(config):
    """
    Pytest configuration hook

    Add custom markers and configuration
    """
    config.addinivalue_line("markers", "hardware: tests requiring capture devices (deselect in CI)")
    config.addinivalue_line("markers", "slow: slow running tests")
    config.addinivalue_line("markers", "integration: integration tests")

"""
Provider Registry Tests
"""

import pytest

from app.providers import ProviderRegistry, init_provider_registry
from app.providers.base import KeyValueStore
from app.providers.media.synthetic import SyntheticCaptureProvider
from app.providers.store.memory import InMemoryStore
from app.providers.upload.cloudinary import CloudinaryUploadProvider


class BrokenStore(InMemoryStore):
    def __init__(self, **options):
        raise RuntimeError("no backend")


@pytest.fixture
def registry():
    return init_provider_registry()


def test_default_providers(registry):
    available = registry.get_available_providers()
    assert [p["name"] for p in available["store"]] == ["memory", "firebase"]
    assert [p["name"] for p in available["media"]] == ["device", "synthetic"]
    assert [p["name"] for p in available["upload"]] == ["cloudinary"]


def test_store_instance_shared(registry):
    first = registry.get_store_provider("memory")
    assert isinstance(first, InMemoryStore)
    assert registry.get_store_provider("memory") is first


def test_options_passed(registry):
    uploader = registry.get_upload_provider("cloudinary", cloud_name="demo", upload_preset="chat")
    assert isinstance(uploader, CloudinaryUploadProvider)
    assert uploader.cloud_name == "demo"
    assert uploader.upload_preset == "chat"


def test_media_provider(registry):
    assert isinstance(registry.get_media_provider("synthetic"), SyntheticCaptureProvider)


def test_unknown_provider(registry):
    assert registry.get_store_provider("redis") is None


def test_wrong_base_class_rejected():
    with pytest.raises(TypeError):
        ProviderRegistry().register_store_provider("bad", SyntheticCaptureProvider)


def test_failed_instantiation(registry):
    registry.register_store_provider("broken", BrokenStore)
    assert registry.get_store_provider("broken") is None


def test_available_providers(registry):
    available = registry.get_available_providers()
    assert {"name": "memory", "class": "InMemoryStore"} in available["store"]
    assert issubclass(InMemoryStore, KeyValueStore)

"""
Providers module - Pluggable store, media capture and upload backends
"""

from .base import (
    KeyValueStore,
    StoreSubscription,
    MediaCaptureProvider,
    MediaConstraints,
    LocalStream,
    UploadProvider,
)

from .registry import (
    ProviderRegistry,
    get_provider_registry,
    init_provider_registry,
    register_default_providers,
)

__all__ = [
    # Base abstractions
    'KeyValueStore',
    'StoreSubscription',
    'MediaCaptureProvider',
    'MediaConstraints',
    'LocalStream',
    'UploadProvider',

    # Registry
    'ProviderRegistry',
    'get_provider_registry',
    'init_provider_registry',
    'register_default_providers',
]

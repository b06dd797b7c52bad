"""
Provider Registry - Central registry for store, media capture and upload providers
Enables selecting backends by name from preferences
"""

import logging
from typing import Any, Dict, List, Optional, Type

from .base import KeyValueStore, MediaCaptureProvider, UploadProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Central registry for all store, media capture and upload providers.
    Allows dynamic registration and instantiation by configured name.
    """

    def __init__(self):
        self._store_providers: Dict[str, Type[KeyValueStore]] = {}
        self._media_providers: Dict[str, Type[MediaCaptureProvider]] = {}
        self._upload_providers: Dict[str, Type[UploadProvider]] = {}
        self._store_instances: Dict[str, KeyValueStore] = {}
        self._media_instances: Dict[str, MediaCaptureProvider] = {}
        self._upload_instances: Dict[str, UploadProvider] = {}

    # ==================== STORE PROVIDERS ====================

    def register_store_provider(self, name: str, provider_class: Type[KeyValueStore]) -> None:
        """
        Register a store provider class.

        Args:
            name: Provider identifier (e.g., 'memory', 'firebase')
            provider_class: Class inheriting from KeyValueStore
        """
        if not issubclass(provider_class, KeyValueStore):
            raise TypeError(f"{provider_class} must inherit from KeyValueStore")

        self._store_providers[name] = provider_class
        logger.info(f"Registered store provider: {name}")

    def get_store_provider(self, name: str, **options) -> Optional[KeyValueStore]:
        """
        Get a store provider instance by name.
        Caches instances for reuse: every service in the process shares one store.
        """
        return self._get_instance("store", name, self._store_providers, self._store_instances, options)

    # ==================== MEDIA PROVIDERS ====================

    def register_media_provider(self, name: str, provider_class: Type[MediaCaptureProvider]) -> None:
        """
        Register a media capture provider class.

        Args:
            name: Provider identifier (e.g., 'device', 'synthetic')
            provider_class: Class inheriting from MediaCaptureProvider
        """
        if not issubclass(provider_class, MediaCaptureProvider):
            raise TypeError(f"{provider_class} must inherit from MediaCaptureProvider")

        self._media_providers[name] = provider_class
        logger.info(f"Registered media provider: {name}")

    def get_media_provider(self, name: str, **options) -> Optional[MediaCaptureProvider]:
        """Get a media capture provider instance by name"""
        return self._get_instance("media", name, self._media_providers, self._media_instances, options)

    # ==================== UPLOAD PROVIDERS ====================

    def register_upload_provider(self, name: str, provider_class: Type[UploadProvider]) -> None:
        if not issubclass(provider_class, UploadProvider):
            raise TypeError(f"{provider_class} must inherit from UploadProvider")

        self._upload_providers[name] = provider_class
        logger.info(f"Registered upload provider: {name}")

    def get_upload_provider(self, name: str, **options) -> Optional[UploadProvider]:
        """Get an upload provider instance by name"""
        return self._get_instance("upload", name, self._upload_providers, self._upload_instances, options)

    # ==================== COMMON ====================

    def _get_instance(
        self,
        kind: str,
        name: str,
        classes: Dict[str, type],
        instances: Dict[str, Any],
        options: Dict[str, Any],
    ) -> Optional[Any]:
        if name not in classes:
            logger.warning(f"{kind.capitalize()} provider '{name}' not found")
            return None

        # Return cached instance if available
        if name in instances:
            return instances[name]

        # Create new instance
        try:
            provider = classes[name](**options)
            instances[name] = provider
            logger.info(f"Instantiated {kind} provider: {name}")
            return provider
        except Exception as e:
            logger.error(f"Failed to instantiate {kind} provider '{name}': {e}")
            return None

    def get_available_providers(self) -> Dict[str, List[Dict]]:
        """
        Get registered providers per kind.
        Returns:
            {
                'store': [{'name': str, 'class': str}, ...],
                'media': [...],
                'upload': [...]
            }
        """
        return {
            kind: [{"name": name, "class": cls.__name__} for name, cls in classes.items()]
            for kind, classes in (
                ("store", self._store_providers),
                ("media", self._media_providers),
                ("upload", self._upload_providers),
            )
        }


def register_default_providers(registry: "ProviderRegistry") -> "ProviderRegistry":
    """Register the built-in backends"""
    from .store.memory import InMemoryStore
    from .store.firebase import FirebaseRealtimeStore
    from .media.device import DeviceCaptureProvider
    from .media.synthetic import SyntheticCaptureProvider
    from .upload.cloudinary import CloudinaryUploadProvider

    registry.register_store_provider("memory", InMemoryStore)
    registry.register_store_provider("firebase", FirebaseRealtimeStore)
    registry.register_media_provider("device", DeviceCaptureProvider)
    registry.register_media_provider("synthetic", SyntheticCaptureProvider)
    registry.register_upload_provider("cloudinary", CloudinaryUploadProvider)
    return registry


# Global registry instance
_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get the global provider registry"""
    global _registry
    if _registry is None:
        _registry = register_default_providers(ProviderRegistry())
    return _registry


def init_provider_registry() -> ProviderRegistry:
    """Initialize the global provider registry"""
    global _registry
    _registry = register_default_providers(ProviderRegistry())
    return _registry

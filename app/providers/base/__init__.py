"""
Base abstractions for pluggable providers
"""

from .store_provider import KeyValueStore, StoreSubscription, ChangeCallback, split_path, paths_overlap
from .media_provider import MediaCaptureProvider, MediaConstraints, LocalStream
from .upload_provider import UploadProvider

__all__ = [
    # Store
    "KeyValueStore",
    "StoreSubscription",
    "ChangeCallback",
    "split_path",
    "paths_overlap",
    # Media
    "MediaCaptureProvider",
    "MediaConstraints",
    "LocalStream",
    # Upload
    "UploadProvider",
]

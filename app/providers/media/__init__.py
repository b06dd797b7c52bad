"""
Media capture providers
"""

from .tracks import ToggleableTrack
from .device import DeviceCaptureProvider
from .synthetic import SyntheticCaptureProvider

__all__ = ["ToggleableTrack", "DeviceCaptureProvider", "SyntheticCaptureProvider"]

"""
Media Capture Provider Base Class
Abstract interface for local audio/video capture devices
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, List
import logging

logger = logging.getLogger(__name__)


@dataclass
class MediaConstraints:
    """Capture request: bounded resolution plus audio processing hints"""

    audio: bool = True
    video: bool = True
    width: int = 640  # ideal
    height: int = 480  # ideal
    max_framerate: int = 30
    echo_cancellation: bool = True
    noise_suppression: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LocalStream:
    """
    A captured local stream: the tracks handed to the peer connection.

    Tracks expose an ``enabled`` attribute and ``stop()``.
    """

    def __init__(self, audio_tracks: List[Any] = None, video_tracks: List[Any] = None, source: str = ""):
        self.audio_tracks = list(audio_tracks or [])
        self.video_tracks = list(video_tracks or [])
        self.source = source
        self.stopped = False

    @property
    def tracks(self) -> List[Any]:
        return self.audio_tracks + self.video_tracks

    def set_audio_enabled(self, enabled: bool) -> None:
        for track in self.audio_tracks:
            track.enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        for track in self.video_tracks:
            track.enabled = enabled

    def stop(self) -> None:
        """Stop every track (idempotent)"""
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks:
            try:
                track.stop()
            except Exception as e:
                logger.warning(f"Error stopping {getattr(track, 'kind', 'media')} track: {e}")


class MediaCaptureProvider(ABC):
    """
    Abstract base class for capture providers.

    open() raises PermissionDenied when access to the device is refused and
    DeviceUnavailable when no usable device exists.
    """

    def __init__(self):
        self.name = "unknown"
        self.display_name = "Generic Capture"

    @abstractmethod
    async def open(self, constraints: MediaConstraints) -> LocalStream:
        """Start capture and return the local stream"""
        pass

    def get_info(self) -> dict:
        return {"name": self.name, "display_name": self.display_name}

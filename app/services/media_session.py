"""
Media Session

Owns the local capture stream of one call: acquire once, toggle audio/video
in place, release exactly once on every exit path.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from app.providers.base import MediaCaptureProvider, MediaConstraints, LocalStream

logger = logging.getLogger(__name__)


class MediaSession:
    def __init__(self, provider: MediaCaptureProvider):
        self.provider = provider
        self.stream: Optional[LocalStream] = None
        self.audio_enabled = True
        self.video_enabled = True
        self._released = False

    @property
    def is_active(self) -> bool:
        return self.stream is not None and not self._released

    async def acquire(self, constraints: Optional[MediaConstraints] = None) -> LocalStream:
        """
        Start capture.

        Raises:
            PermissionDenied: user/OS refused device access
            DeviceUnavailable: no usable capture device
        """
        if self.stream is not None or self._released:
            raise RuntimeError("MediaSession.acquire() called twice")

        constraints = constraints or MediaConstraints()
        stream = await self.provider.open(constraints)

        if self._released:
            # release() ran while the device was opening
            stream.stop()
            return stream

        self.stream = stream
        self.audio_enabled = True
        self.video_enabled = True
        logger.info(
            f"Media acquired from {self.provider.name}: "
            f"{len(stream.audio_tracks)} audio / {len(stream.video_tracks)} video track(s)"
        )
        return stream

    def set_audio_enabled(self, enabled: bool) -> None:
        if not self.is_active:
            return
        self.stream.set_audio_enabled(enabled)
        self.audio_enabled = enabled

    def set_video_enabled(self, enabled: bool) -> None:
        if not self.is_active:
            return
        self.stream.set_video_enabled(enabled)
        self.video_enabled = enabled

    def release(self) -> None:
        """Stop all tracks and free the device (idempotent)"""
        if self._released:
            return
        self._released = True
        if self.stream is not None:
            self.stream.stop()
            logger.info("Media released")

    @asynccontextmanager
    async def acquired(self, constraints: Optional[MediaConstraints] = None):
        """Scoped acquisition: the stream is released however the block exits"""
        try:
            yield await self.acquire(constraints)
        finally:
            self.release()

"""
Device Capture Provider

Captures camera + microphone through aiortc's MediaPlayer (FFmpeg input
devices). Defaults target Linux: v4l2 camera, PulseAudio microphone.
"""

import asyncio
import logging
from typing import Optional

from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from ..base.media_provider import MediaCaptureProvider, MediaConstraints, LocalStream
from .tracks import ToggleableTrack
from app.services.call_errors import PermissionDenied, DeviceUnavailable

logger = logging.getLogger(__name__)


class DeviceCaptureProvider(MediaCaptureProvider):
    """Camera/microphone capture via FFmpeg input devices"""

    def __init__(
        self,
        video_device: str = "/dev/video0",
        video_format: str = "v4l2",
        audio_device: str = "default",
        audio_format: str = "pulse",
        **_options,
    ):
        super().__init__()
        self.name = "device"
        self.display_name = "Capture devices"
        self.video_device = video_device
        self.video_format = video_format
        self.audio_device = audio_device
        self.audio_format = audio_format

    def _video_options(self, constraints: MediaConstraints) -> dict:
        return {
            "video_size": f"{constraints.width}x{constraints.height}",
            "framerate": str(constraints.max_framerate),
        }

    def _open_player(self, device: str, fmt: str, options: Optional[dict]) -> MediaPlayer:
        return MediaPlayer(device, format=fmt, options=options or {})

    async def open(self, constraints: MediaConstraints) -> LocalStream:
        video_player = None
        audio_player = None
        try:
            if constraints.video:
                video_player = await asyncio.to_thread(
                    self._open_player, self.video_device, self.video_format, self._video_options(constraints)
                )
                if video_player.video is None:
                    raise DeviceUnavailable(f"{self.video_device} has no video stream")
            if constraints.audio:
                # No AEC/NS filter in the FFmpeg capture path; the flags stay advisory
                audio_player = await asyncio.to_thread(
                    self._open_player, self.audio_device, self.audio_format, None
                )
                if audio_player.audio is None:
                    raise DeviceUnavailable(f"{self.audio_device} has no audio stream")
        except PermissionError as e:
            self._stop_players(video_player, audio_player)
            logger.warning(f"Capture permission denied: {e}")
            raise PermissionDenied(str(e)) from e
        except DeviceUnavailable:
            self._stop_players(video_player, audio_player)
            raise
        except (OSError, FFmpegError) as e:
            self._stop_players(video_player, audio_player)
            logger.warning(f"Capture device unavailable: {e}")
            raise DeviceUnavailable(str(e)) from e

        audio_tracks = [ToggleableTrack(audio_player.audio)] if audio_player else []
        video_tracks = [ToggleableTrack(video_player.video)] if video_player else []
        logger.info(
            f"Capture opened: video={self.video_device if video_player else '-'} "
            f"audio={self.audio_device if audio_player else '-'}"
        )
        return LocalStream(audio_tracks=audio_tracks, video_tracks=video_tracks, source=self.name)

    @staticmethod
    def _stop_players(*players):
        for player in players:
            if player is None:
                continue
            for track in (player.audio, player.video):
                if track is not None:
                    track.stop()

    def get_info(self) -> dict:
        info = super().get_info()
        info.update(
            {
                "video_device": self.video_device,
                "video_format": self.video_format,
                "audio_device": self.audio_device,
                "audio_format": self.audio_format,
            }
        )
        return info

"""
Synthetic Capture Provider

Generated blank video and silent audio from aiortc, for machines with no
camera or microphone (CI, servers, the local two-identity demo).
"""

from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from ..base.media_provider import MediaCaptureProvider, MediaConstraints, LocalStream
from .tracks import ToggleableTrack


class SyntheticCaptureProvider(MediaCaptureProvider):
    def __init__(self, **_options):
        super().__init__()
        self.name = "synthetic"
        self.display_name = "Synthetic test media"

    async def open(self, constraints: MediaConstraints) -> LocalStream:
        audio_tracks = [ToggleableTrack(AudioStreamTrack())] if constraints.audio else []
        video_tracks = [ToggleableTrack(VideoStreamTrack())] if constraints.video else []
        return LocalStream(audio_tracks=audio_tracks, video_tracks=video_tracks, source=self.name)

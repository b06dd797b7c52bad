"""
Toggleable media tracks

aiortc tracks have no ``enabled`` flag. This wrapper gives them one: while
disabled the track keeps producing frames at the source cadence but blanks
them (black video, silent audio), which is what a muted browser track sends.
"""

import numpy as np
from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame


def blank_video_frame(frame: VideoFrame) -> VideoFrame:
    """Black frame with the same geometry and timing as frame"""
    black = VideoFrame.from_ndarray(np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="bgr24")
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


def silent_audio_frame(frame: AudioFrame) -> AudioFrame:
    """Silent frame with the same format, layout and timing as frame"""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    silent.time_base = frame.time_base
    return silent


class ToggleableTrack(MediaStreamTrack):
    """Wraps a source track and blanks its frames while disabled"""

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self):
        frame = await self._source.recv()
        if self.enabled:
            return frame
        if self.kind == "video":
            return blank_video_frame(frame)
        return silent_audio_frame(frame)

    def stop(self):
        super().stop()
        self._source.stop()

"""
Media Tests

MediaSession lifecycle, toggleable tracks and the capture providers
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest
from av import AudioFrame, VideoFrame

from app.providers.base import LocalStream, MediaConstraints
from app.providers.media import DeviceCaptureProvider, SyntheticCaptureProvider, ToggleableTrack
from app.providers.media.tracks import blank_video_frame, silent_audio_frame
from app.services.call_errors import DeviceUnavailable, PermissionDenied
from app.services.media_session import MediaSession

from tests.fakes import FakeMediaProvider, FakeTrack


class TestMediaSession:
    @pytest.mark.asyncio
    async def test_acquire(self):
        provider = FakeMediaProvider()
        session = MediaSession(provider)

        stream = await session.acquire()

        assert session.is_active is True
        assert session.stream is stream
        assert provider.constraints[0] == MediaConstraints()

    @pytest.mark.asyncio
    async def test_default_constraints(self):
        provider = FakeMediaProvider()
        await MediaSession(provider).acquire()

        constraints = provider.constraints[0]
        assert (constraints.width, constraints.height, constraints.max_framerate) == (640, 480, 30)
        assert constraints.echo_cancellation is True
        assert constraints.noise_suppression is True

    @pytest.mark.asyncio
    async def test_acquire_twice_fails(self):
        session = MediaSession(FakeMediaProvider())
        await session.acquire()
        with pytest.raises(RuntimeError):
            await session.acquire()

    @pytest.mark.asyncio
    async def test_acquire_errors_propagate(self):
        session = MediaSession(FakeMediaProvider(error=PermissionDenied("no")))
        with pytest.raises(PermissionDenied):
            await session.acquire()
        assert session.is_active is False

    @pytest.mark.asyncio
    async def test_toggles_flip_track_flags(self):
        session = MediaSession(FakeMediaProvider())
        stream = await session.acquire()

        session.set_audio_enabled(False)
        session.set_video_enabled(False)

        assert stream.audio_tracks[0].enabled is False
        assert stream.video_tracks[0].enabled is False
        assert (session.audio_enabled, session.video_enabled) == (False, False)

    def test_toggles_without_stream_are_noops(self):
        session = MediaSession(FakeMediaProvider())
        session.set_audio_enabled(False)
        session.set_video_enabled(False)
        assert session.audio_enabled is True

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        session = MediaSession(FakeMediaProvider())
        stream = await session.acquire()

        session.release()
        session.release()

        assert [track.stop_count for track in stream.tracks] == [1, 1]
        assert session.is_active is False

    @pytest.mark.asyncio
    async def test_release_while_opening_stops_stream(self):
        session = MediaSession(FakeMediaProvider())
        task = asyncio.ensure_future(session.acquire())
        await asyncio.sleep(0)

        session.release()
        stream = await task

        assert stream.stopped is True
        assert session.is_active is False

    @pytest.mark.asyncio
    async def test_scoped_acquisition(self):
        session = MediaSession(FakeMediaProvider())

        with pytest.raises(ValueError):
            async with session.acquired() as stream:
                assert stream.stopped is False
                raise ValueError("leave the block")

        assert stream.stopped is True


class TestLocalStream:
    def test_stop_survives_failing_track(self):
        broken = FakeTrack("audio")
        broken.stop = MagicMock(side_effect=RuntimeError("gone"))
        video = FakeTrack("video")
        stream = LocalStream([broken], [video])

        stream.stop()

        assert video.stop_count == 1


class TestTracks:
    def test_blank_video_frame(self):
        frame = VideoFrame.from_ndarray(np.full((48, 64, 3), 200, dtype=np.uint8), format="bgr24")
        frame.pts = 90

        black = blank_video_frame(frame)

        assert (black.width, black.height, black.pts) == (64, 48, 90)
        assert not black.to_ndarray(format="bgr24").any()

    def test_silent_audio_frame(self):
        frame = AudioFrame.from_ndarray(np.full((1, 960), 1000, dtype=np.int16), format="s16", layout="mono")
        frame.sample_rate = 48000
        frame.pts = 960

        silent = silent_audio_frame(frame)

        assert silent.samples == 960
        assert silent.sample_rate == 48000
        assert silent.pts == 960
        assert not silent.to_ndarray().any()

    @pytest.mark.asyncio
    async def test_enabled_track_passes_frames_through(self):
        frame = VideoFrame.from_ndarray(np.full((8, 8, 3), 50, dtype=np.uint8), format="bgr24")
        source = MagicMock(kind="video")
        source.recv = AsyncMock(return_value=frame)
        track = ToggleableTrack(source)

        assert track.kind == "video"
        assert await track.recv() is frame

    @pytest.mark.asyncio
    async def test_disabled_track_blanks_frames(self):
        frame = VideoFrame.from_ndarray(np.full((8, 8, 3), 50, dtype=np.uint8), format="bgr24")
        source = MagicMock(kind="video")
        source.recv = AsyncMock(return_value=frame)
        track = ToggleableTrack(source)

        track.enabled = False
        blanked = await track.recv()

        assert blanked is not frame
        assert not blanked.to_ndarray(format="bgr24").any()

    def test_stop_stops_source(self):
        source = MagicMock(kind="audio")
        track = ToggleableTrack(source)
        track.stop()
        source.stop.assert_called_once()
        assert track.readyState == "ended"


class TestSyntheticProvider:
    @pytest.mark.asyncio
    async def test_opens_audio_and_video(self):
        stream = await SyntheticCaptureProvider().open(MediaConstraints())

        assert [track.kind for track in stream.tracks] == ["audio", "video"]
        assert all(isinstance(track, ToggleableTrack) for track in stream.tracks)
        stream.stop()

    @pytest.mark.asyncio
    async def test_audio_only(self):
        stream = await SyntheticCaptureProvider().open(MediaConstraints(video=False))
        assert stream.video_tracks == []
        stream.stop()


class TestDeviceProvider:
    @staticmethod
    def _player(audio=True, video=True):
        player = MagicMock()
        player.audio = MagicMock(kind="audio") if audio else None
        player.video = MagicMock(kind="video") if video else None
        return player

    @pytest.mark.asyncio
    async def test_opens_players_with_constraint_options(self):
        provider = DeviceCaptureProvider(video_device="/dev/video2")
        with patch("app.providers.media.device.MediaPlayer", return_value=self._player()) as player_class:
            stream = await provider.open(MediaConstraints(width=1280, height=720, max_framerate=25))

        video_call = player_class.call_args_list[0]
        assert video_call.args == ("/dev/video2",)
        assert video_call.kwargs["format"] == "v4l2"
        assert video_call.kwargs["options"] == {"video_size": "1280x720", "framerate": "25"}
        assert player_class.call_args_list[1].kwargs["format"] == "pulse"
        assert len(stream.tracks) == 2

    @pytest.mark.asyncio
    async def test_permission_error(self):
        provider = DeviceCaptureProvider()
        with patch("app.providers.media.device.MediaPlayer", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionDenied):
                await provider.open(MediaConstraints())

    @pytest.mark.asyncio
    async def test_missing_device(self):
        provider = DeviceCaptureProvider(video_device="/dev/video9")
        with patch("app.providers.media.device.MediaPlayer", side_effect=FileNotFoundError("/dev/video9")):
            with pytest.raises(DeviceUnavailable):
                await provider.open(MediaConstraints())

    @pytest.mark.asyncio
    async def test_device_without_video_stream(self):
        provider = DeviceCaptureProvider()
        player = self._player(video=False)
        with patch("app.providers.media.device.MediaPlayer", return_value=player):
            with pytest.raises(DeviceUnavailable):
                await provider.open(MediaConstraints())
        player.audio.stop.assert_called_once()

    def test_info(self):
        info = DeviceCaptureProvider(audio_device="hw:1", audio_format="alsa").get_info()
        assert info["name"] == "device"
        assert info["audio_device"] == "hw:1"
        assert info["audio_format"] == "alsa"

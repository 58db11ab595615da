"""
Tests for the process-wide audio output mixer.
"""

import asyncio
from typing import Any, Dict, List

import numpy as np
import pytest

from shakbot.core.protocols import AudioBuffer
from shakbot.speech import playback as playback_module
from shakbot.speech.playback import SoundDeviceAudioOutput, get_audio_output, resample_linear


class FakeOutputStream:
    """Records how the output stream is driven."""

    instances: List["FakeOutputStream"] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs: Dict[str, Any] = kwargs
        self.active = False
        self.starts = 0
        self.closed = False
        FakeOutputStream.instances.append(self)

    def start(self) -> None:
        self.starts += 1
        self.active = True

    def stop(self) -> None:
        self.active = False

    def close(self) -> None:
        self.closed = True

    def pull(self, frames: int) -> np.ndarray:
        """Invoke the audio callback like the audio thread would."""
        outdata = np.zeros((frames, 1), dtype=np.float32)
        self.kwargs["callback"](outdata, frames, None, None)
        return outdata[:, 0]


@pytest.fixture
def output() -> SoundDeviceAudioOutput:
    FakeOutputStream.instances = []
    return SoundDeviceAudioOutput(sample_rate=8, stream_factory=FakeOutputStream)


def buffer(values: List[float], sample_rate: int = 8) -> AudioBuffer:
    return AudioBuffer(samples=np.array(values, dtype=np.float32), sample_rate=sample_rate)


class TestResample:
    def test_same_rate_is_untouched(self) -> None:
        samples = np.array([0.1, 0.2], dtype=np.float32)
        assert resample_linear(samples, 8, 8) is samples

    def test_upsample_length(self) -> None:
        samples = np.array([0.0, 1.0], dtype=np.float32)
        result = resample_linear(samples, 8, 16)
        assert result.size == 4
        assert result[0] == pytest.approx(0.0)
        assert result[-1] == pytest.approx(1.0)


class TestSoundDeviceAudioOutput:
    """Test lazy stream management and mixing."""

    @pytest.mark.asyncio
    async def test_stream_opened_once(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        output.ensure_running()

        assert len(FakeOutputStream.instances) == 1
        stream = FakeOutputStream.instances[0]
        assert stream.kwargs["samplerate"] == 8
        assert stream.kwargs["channels"] == 1
        assert stream.starts == 1

    @pytest.mark.asyncio
    async def test_stopped_stream_is_resumed(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        stream = FakeOutputStream.instances[0]
        stream.stop()
        output.ensure_running()
        assert stream.starts == 2

    @pytest.mark.asyncio
    async def test_playback_finishes_when_exhausted(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        stream = FakeOutputStream.instances[0]
        handle = output.play(buffer([0.25, 0.5, 0.75]))

        first = stream.pull(2)
        assert not handle.done
        second = stream.pull(2)

        np.testing.assert_allclose(first, [0.25, 0.5])
        np.testing.assert_allclose(second, [0.75, 0.0])
        assert handle.done
        await asyncio.wait_for(handle.wait(), timeout=1)
        assert output.active_playbacks == 0

    @pytest.mark.asyncio
    async def test_overlapping_playbacks_are_mixed(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        stream = FakeOutputStream.instances[0]
        output.play(buffer([0.5, 0.5]))
        output.play(buffer([0.25, 0.75]))

        np.testing.assert_allclose(stream.pull(2), [0.75, 1.0])

    @pytest.mark.asyncio
    async def test_cancel_stops_one_playback(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        stream = FakeOutputStream.instances[0]
        cancelled = output.play(buffer([0.5, 0.5]))
        kept = output.play(buffer([0.25, 0.25]))

        cancelled.cancel()

        np.testing.assert_allclose(stream.pull(2), [0.25, 0.25])
        await asyncio.wait_for(cancelled.wait(), timeout=1)
        assert kept.done

    @pytest.mark.asyncio
    async def test_empty_buffer_finishes_immediately(self, output: SoundDeviceAudioOutput) -> None:
        handle = output.play(buffer([]))
        assert handle.done
        await asyncio.wait_for(handle.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_close_finishes_active_playbacks(self, output: SoundDeviceAudioOutput) -> None:
        output.ensure_running()
        stream = FakeOutputStream.instances[0]
        handle = output.play(buffer([0.1] * 16))

        output.close()

        assert handle.done
        assert stream.closed
        assert output.active_playbacks == 0


class TestGetAudioOutput:
    def test_singleton(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(playback_module, "_audio_output", None)
        first = get_audio_output()
        assert get_audio_output() is first
        assert first.sample_rate == 24000

"""Process-wide audio output using sounddevice.

One output stream is opened lazily and kept for the lifetime of the process.
Its callback mixes every active playback, so starting a new playback never
stops an earlier one; each playback is stopped through its own handle.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, List, Optional

import numpy as np

from ..core.protocols import AudioBuffer
from .pcm import SPEECH_SAMPLE_RATE

logger = logging.getLogger(__name__)


def _default_output_stream(**kwargs: Any) -> Any:
    import sounddevice as sd

    return sd.OutputStream(**kwargs)


def resample_linear(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Resample mono audio with linear interpolation."""
    if source_rate == target_rate or samples.size == 0:
        return samples
    target_len = int(round(samples.size * target_rate / source_rate))
    positions = np.linspace(0, samples.size - 1, num=target_len)
    return np.interp(positions, np.arange(samples.size), samples).astype(np.float32)


class SoundDevicePlayback:
    """Handle to one playback mixed into the output stream."""

    def __init__(self, samples: np.ndarray, loop: asyncio.AbstractEventLoop):
        self.samples = samples
        self.position = 0
        self._loop = loop
        self._done = False
        self._finished = asyncio.Event()

    @property
    def done(self) -> bool:
        return self._done

    def cancel(self) -> None:
        self._finish()

    async def wait(self) -> None:
        await self._finished.wait()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            self._loop.call_soon_threadsafe(self._finished.set)
        except RuntimeError as e:
            logger.debug(f"Playback finished after its loop closed: {e}")


class SoundDeviceAudioOutput:
    """Mixer over a single sounddevice output stream."""

    def __init__(
        self,
        sample_rate: int = SPEECH_SAMPLE_RATE,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        self.sample_rate = sample_rate
        self.stream_factory = stream_factory
        self._stream: Optional[Any] = None
        self._sources: List[SoundDevicePlayback] = []
        self._lock = threading.Lock()

    @property
    def active_playbacks(self) -> int:
        with self._lock:
            return sum(1 for s in self._sources if not s.done)

    def ensure_running(self) -> None:
        """Open the stream on first use and resume it if stopped."""
        if self._stream is None:
            factory = self.stream_factory or _default_output_stream
            self._stream = factory(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                callback=self._audio_callback,
            )
            logger.info(f"Opened audio output at {self.sample_rate} Hz")
        if not self._stream.active:
            self._stream.start()

    def play(self, buffer: AudioBuffer) -> SoundDevicePlayback:
        samples = resample_linear(
            np.asarray(buffer.samples, dtype=np.float32),
            buffer.sample_rate,
            self.sample_rate,
        )
        playback = SoundDevicePlayback(samples, asyncio.get_running_loop())
        if samples.size == 0:
            playback._finish()
            return playback

        with self._lock:
            self._sources.append(playback)
        logger.debug(f"Started playback of {buffer.duration:.2f}s")
        return playback

    def _audio_callback(
        self, outdata: np.ndarray, frames: int, time: Any, status: Any
    ) -> None:
        """Runs on the audio thread."""
        if status:
            logger.debug(f"Audio output status: {status}")

        mix = np.zeros(frames, dtype=np.float32)
        finished: List[SoundDevicePlayback] = []

        with self._lock:
            remaining = []
            for source in self._sources:
                if source.done:
                    continue
                chunk = source.samples[source.position:source.position + frames]
                mix[: chunk.size] += chunk
                source.position += chunk.size
                if source.position >= source.samples.size:
                    finished.append(source)
                else:
                    remaining.append(source)
            self._sources = remaining

        outdata[:] = np.clip(mix, -1.0, 1.0).reshape(-1, 1)
        for source in finished:
            source._finish()

    def close(self) -> None:
        with self._lock:
            sources, self._sources = self._sources, []
        for source in sources:
            source._finish()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None


_audio_output: Optional[SoundDeviceAudioOutput] = None
_audio_output_lock = threading.Lock()


def get_audio_output(sample_rate: int = SPEECH_SAMPLE_RATE) -> SoundDeviceAudioOutput:
    """Return the process-wide audio output, creating it on first use."""
    global _audio_output
    with _audio_output_lock:
        if _audio_output is None:
            _audio_output = SoundDeviceAudioOutput(sample_rate=sample_rate)
        return _audio_output

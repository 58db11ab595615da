"""Microphone recognition capability using sounddevice.

Each resource records one utterance from the default input device, detects
its end from the RMS level, transcribes it and then ends itself. The capture
state machine restarts resources for as long as the user wants to listen.
"""

import asyncio
import io
import logging
import threading
import time
from typing import Any, Awaitable, Callable, List, Optional

import numpy as np
import soundfile as sf

from ..core.config import VoiceConfig
from ..core.exceptions import PermissionDeniedError, VoiceCaptureError
from ..core.protocols import RecognitionHandler, RecognitionSegment

logger = logging.getLogger(__name__)

Transcriber = Callable[[bytes], Awaitable[str]]

NO_SPEECH = "no-speech"


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float samples as 16-bit PCM WAV bytes."""
    wav_buffer = io.BytesIO()
    sf.write(wav_buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    wav_bytes = wav_buffer.getvalue()
    wav_buffer.close()
    return wav_bytes


def _default_input_stream(**kwargs: Any) -> Any:
    import sounddevice as sd

    return sd.InputStream(**kwargs)


def frame_rms(frame: np.ndarray) -> float:
    if frame.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(frame, dtype=np.float64))))


class MicrophoneRecognitionResource:
    """Records a single utterance, then transcribes it."""

    def __init__(
        self,
        handler: RecognitionHandler,
        transcribe: Transcriber,
        config: VoiceConfig,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        self.handler = handler
        self.transcribe = transcribe
        self.config = config
        self.stream_factory = stream_factory

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream: Optional[Any] = None
        self._lock = threading.Lock()
        self._frames: List[np.ndarray] = []
        self._started_at = 0.0
        self._speech_started = False
        self._last_voice_at = 0.0
        self._finishing = False
        self._ended = False
        self._task: Optional["asyncio.Task[None]"] = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._started_at = time.monotonic()
        try:
            factory = self.stream_factory or _default_input_stream
            self._stream = factory(
                channels=1,
                samplerate=self.config.sample_rate,
                dtype=np.float32,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            # Any failure to open the device counts as refused access
            self._stream = None
            raise PermissionDeniedError(
                f"Cannot open microphone: {e}", component="MicrophoneRecognition"
            ) from e
        logger.debug("Microphone capture started")

    def stop(self) -> None:
        self._close_stream()
        if self._task is not None:
            self._task.cancel()
        self._end()

    def _audio_callback(
        self, indata: np.ndarray, frames: int, time_info: Any, status: Any
    ) -> None:
        """Runs on the audio thread."""
        if status:
            logger.debug(f"Audio input status: {status}")

        mono = indata[:, 0] if indata.ndim > 1 else indata
        now = time.monotonic()

        with self._lock:
            if self._finishing:
                return
            self._frames.append(mono.copy())

            if frame_rms(mono) >= self.config.speech_threshold:
                self._speech_started = True
                self._last_voice_at = now

            elapsed = now - self._started_at
            utterance_over = self._speech_started and (
                now - self._last_voice_at >= self.config.end_of_utterance_s
            )
            if not (utterance_over or elapsed >= self.config.max_utterance_s):
                return
            self._finishing = True

        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._finish_utterance)

    def _finish_utterance(self) -> None:
        self._close_stream()
        if self._ended:
            return

        with self._lock:
            heard_speech = self._speech_started
            samples = (
                np.concatenate(self._frames) if self._frames else np.zeros(0, np.float32)
            )
            self._frames = []

        if not heard_speech or samples.size == 0:
            self.handler.on_error(VoiceCaptureError(NO_SPEECH, error_code="NO_SPEECH"))
            self._end()
            return

        self._task = asyncio.get_running_loop().create_task(self._transcribe(samples))

    async def _transcribe(self, samples: np.ndarray) -> None:
        try:
            text = await self.transcribe(encode_wav(samples, self.config.sample_rate))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Transcription failed: {e}")
            self.handler.on_error(
                VoiceCaptureError(f"Transcription failed: {e}", error_code="TRANSCRIPTION")
            )
        else:
            text = text.strip()
            if text:
                self.handler.on_result([RecognitionSegment(text=text, is_final=True)])
            else:
                self.handler.on_error(VoiceCaptureError(NO_SPEECH, error_code="NO_SPEECH"))
        finally:
            self._end()

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.debug(f"Error closing input stream: {e}")

    def _end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self.handler.on_end()


class MicrophoneRecognitionCapability:
    """Creates microphone recognition resources."""

    def __init__(
        self,
        transcribe: Transcriber,
        config: Optional[VoiceConfig] = None,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        self.transcribe = transcribe
        self.config = config or VoiceConfig()
        self.stream_factory = stream_factory

    def create(self, handler: RecognitionHandler) -> MicrophoneRecognitionResource:
        return MicrophoneRecognitionResource(
            handler, self.transcribe, self.config, self.stream_factory
        )

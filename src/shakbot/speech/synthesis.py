"""
Speech synthesis pipeline.

Turns text into playable audio through a synthesis service, either as one
buffer for the whole utterance or as a sequence of buffers decoded as the
chunks arrive, and hands buffers to the process-wide audio output.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from ..core.config import RetryPolicyConfig
from ..core.exceptions import NoAudioProducedError
from ..core.protocols import AudioBuffer, AudioOutput, PlaybackHandle, SpeechSynthesisService
from ..core.resilience import retry_with_backoff
from .pcm import SPEECH_SAMPLE_RATE, decode_pcm16

logger = logging.getLogger(__name__)


class StreamingPlayback:
    """Plays streamed buffers back to back until exhausted or cancelled."""

    def __init__(self, buffers: AsyncIterator[AudioBuffer], output: AudioOutput):
        self._buffers = buffers
        self._output = output
        self._current: Optional[PlaybackHandle] = None
        self._cancelled = False
        self.chunks_played = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._current is not None:
            self._current.cancel()

    async def run(self) -> None:
        async for buffer in self._buffers:
            if self._cancelled:
                break
            if self._current is not None:
                await self._current.wait()
                if self._cancelled:
                    break
            self._output.ensure_running()
            self._current = self._output.play(buffer)
            self.chunks_played += 1

        if self._current is not None and not self._cancelled:
            await self._current.wait()


class SpeechSynthesisPipeline:
    """Batch and streaming text-to-audio decoding."""

    def __init__(
        self,
        service: SpeechSynthesisService,
        retry_config: Optional[RetryPolicyConfig] = None,
        sample_rate: int = SPEECH_SAMPLE_RATE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.service = service
        self.retry_config = retry_config or RetryPolicyConfig()
        self.sample_rate = sample_rate
        self._sleep = sleep

    async def synthesize(self, text: str) -> AudioBuffer:
        """Synthesize the whole text into one buffer."""
        payload = await retry_with_backoff(
            lambda: self.service.synthesize(text),
            config=self.retry_config,
            sleep=self._sleep,
            operation="speech synthesis",
        )
        if not payload:
            raise NoAudioProducedError(component="SpeechSynthesisPipeline")

        buffer = decode_pcm16(payload, self.sample_rate)
        if buffer.frame_count == 0:
            raise NoAudioProducedError(component="SpeechSynthesisPipeline")

        logger.debug(f"Synthesized {buffer.duration:.2f}s of audio")
        return buffer

    async def synthesize_stream(self, text: str) -> AsyncIterator[AudioBuffer]:
        """Yield one buffer per received chunk, as soon as it arrives."""
        produced = False
        carry = b""
        async for chunk in self.service.synthesize_stream(text):
            data = carry + chunk
            # Keep sample alignment across chunk boundaries
            cut = len(data) - (len(data) % 2)
            data, carry = data[:cut], data[cut:]
            if not data:
                continue
            produced = True
            yield decode_pcm16(data, self.sample_rate)

        if not produced:
            raise NoAudioProducedError(component="SpeechSynthesisPipeline")

    async def speak(self, text: str, output: AudioOutput) -> PlaybackHandle:
        """Synthesize and start playback; returns the cancel handle."""
        buffer = await self.synthesize(text)
        output.ensure_running()
        return output.play(buffer)

    def speak_streaming(self, text: str, output: AudioOutput) -> StreamingPlayback:
        """Create a playback that starts with the first received chunk."""
        return StreamingPlayback(self.synthesize_stream(text), output)

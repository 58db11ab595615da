"""
Speech services backed by the OpenAI audio API.

Synthesis returns raw 24 kHz signed 16-bit little-endian PCM, either whole
or as streamed chunks. Transcription turns recorded WAV audio into text for
the microphone recognition capability.
"""

import io
import logging
from typing import AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from ..core.config import CompletionConfig, SpeechConfig, VoiceConfig
from .base_service import BaseService, handle_openai_error, to_service_error

logger = logging.getLogger(__name__)

# 100 ms of 24 kHz 16-bit mono audio
STREAM_CHUNK_BYTES = 4800


class OpenAISpeechService(BaseService):
    """Text-to-speech and speech-to-text over OpenAI."""

    def __init__(
        self,
        config: Optional[SpeechConfig] = None,
        voice_config: Optional[VoiceConfig] = None,
        credentials: Optional[CompletionConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(credentials, client)
        self.config = config or SpeechConfig()
        self.voice_config = voice_config or VoiceConfig()

    @handle_openai_error
    async def synthesize(self, text: str) -> bytes:
        """Synthesize the whole text as one PCM payload."""
        response = await self.client.audio.speech.create(
            model=self.config.model,
            voice=self.config.voice,
            input=text,
            response_format="pcm",
        )
        payload = response.content
        logger.debug(f"Synthesized {len(payload)} bytes of PCM")
        return payload

    async def synthesize_stream(self, text: str) -> AsyncIterator[bytes]:
        """Yield PCM chunks as they arrive."""
        try:
            async with self.client.audio.speech.with_streaming_response.create(
                model=self.config.model,
                voice=self.config.voice,
                input=text,
                response_format="pcm",
            ) as response:
                async for chunk in response.iter_bytes(chunk_size=STREAM_CHUNK_BYTES):
                    if chunk:
                        yield chunk
        except openai.OpenAIError as e:
            raise to_service_error(e, self.__class__.__name__) from e

    @handle_openai_error
    async def transcribe(self, wav_bytes: bytes) -> str:
        """Transcribe WAV audio bytes into text."""
        if not wav_bytes:
            raise ValueError("wav_bytes must contain data for transcription")

        audio_file = io.BytesIO(wav_bytes)
        audio_file.name = "speech.wav"

        response = await self.client.audio.transcriptions.create(
            model=self.voice_config.transcription_model,
            file=audio_file,
            language=self.voice_config.language,
        )
        return (getattr(response, "text", None) or "").strip()

"""PCM decoding for synthesized speech."""

import logging

import numpy as np

from ..core.exceptions import handle_audio_error
from ..core.protocols import AudioBuffer

logger = logging.getLogger(__name__)

SPEECH_SAMPLE_RATE = 24000
PCM_SCALE = 32768.0


@handle_audio_error
def decode_pcm16(payload: bytes, sample_rate: int = SPEECH_SAMPLE_RATE) -> AudioBuffer:
    """Decode signed 16-bit little-endian PCM into a mono float buffer.

    Each sample is divided by 32768, so the result lies in [-1.0, 1.0).
    A trailing odd byte cannot form a sample and is dropped.
    """
    if len(payload) % 2:
        logger.warning(f"Dropping trailing byte of odd-length PCM payload ({len(payload)} bytes)")
        payload = payload[:-1]

    samples = np.frombuffer(payload, dtype="<i2").astype(np.float32) / PCM_SCALE
    return AudioBuffer(samples=samples, sample_rate=sample_rate, channels=1)

"""
Protocols and interfaces for ShakBot.

Defines the contracts that external collaborators (completion, speech,
recognition, persistence and audio output) must implement so the
conversation core can be driven by real adapters or test fakes alike.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Protocol, Sequence

import numpy as np

if TYPE_CHECKING:
    from ..conversation.models import ChatSession, ImageAttachment, Message
    from .exceptions import VoiceCaptureError


@dataclass
class AudioBuffer:
    """Decoded single-channel audio ready for playback."""

    samples: np.ndarray
    sample_rate: int
    channels: int = 1

    @property
    def frame_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count / self.sample_rate


@dataclass
class EditResult:
    """Result of a multimodal edit or generation request."""

    text: Optional[str] = None
    image: Optional["ImageAttachment"] = None


@dataclass(frozen=True)
class RecognitionSegment:
    """One transcript segment delivered by a recognition resource."""

    text: str
    is_final: bool


# Outbound services


class CompletionService(Protocol):
    """Protocol for the language-completion backend."""

    def stream_turn(
        self,
        history: Sequence["Message"],
        text: str,
        model_variant: str,
        memory: str,
    ) -> AsyncIterator[str]:
        """Open a streaming turn; yields text fragments in delivery order."""
        ...

    async def edit_or_generate_image(
        self, prompt: str, image: Optional["ImageAttachment"] = None
    ) -> EditResult:
        """Edit the given image, or generate one when no image is given."""
        ...

    async def summarize_title(self, text: str) -> str:
        """Produce a short session title from the opening user text."""
        ...

    async def refine_memory(
        self, current_memory: str, user_text: str, model_text: str
    ) -> str:
        """Return an updated long-term memory summary."""
        ...


class SpeechSynthesisService(Protocol):
    """Protocol for text-to-speech backends producing 16-bit PCM."""

    async def synthesize(self, text: str) -> bytes:
        """Synthesize the whole utterance as one PCM payload."""
        ...

    def synthesize_stream(self, text: str) -> AsyncIterator[bytes]:
        """Synthesize as a sequence of PCM payload chunks."""
        ...


# Speech recognition (host-provided capability)


class RecognitionHandler(Protocol):
    """Receives events from one recognition resource."""

    def on_result(self, segments: List[RecognitionSegment]) -> None:
        ...

    def on_error(self, error: "VoiceCaptureError") -> None:
        ...

    def on_end(self) -> None:
        ...


class RecognitionResource(Protocol):
    """A single live recognition session."""

    def start(self) -> None:
        """Start capturing; raises if the resource cannot start."""
        ...

    def stop(self) -> None:
        """Stop capturing; on_end is delivered afterwards."""
        ...


class RecognitionCapability(Protocol):
    """Factory for recognition resources."""

    def create(self, handler: RecognitionHandler) -> RecognitionResource:
        ...


# Persistence


class PersistenceService(Protocol):
    """Storage contract for the session collection and long-term memory."""

    async def fetch_sessions(self, user_id: str) -> List["ChatSession"]:
        ...

    async def save_sessions(self, user_id: str, sessions: List["ChatSession"]) -> None:
        """Replace the persisted collection; may raise StorageCapacityExceededError."""
        ...

    async def delete_session(self, user_id: str, session_id: str) -> None:
        ...

    async def fetch_memory(self, user_id: str) -> str:
        ...

    async def save_memory(self, user_id: str, memory: str) -> None:
        ...


# Audio output


class PlaybackHandle(Protocol):
    """Handle to one active playback."""

    @property
    def done(self) -> bool:
        ...

    def cancel(self) -> None:
        ...

    async def wait(self) -> None:
        ...


class AudioOutput(Protocol):
    """Process-wide audio output resource."""

    def ensure_running(self) -> None:
        ...

    def play(self, buffer: AudioBuffer) -> PlaybackHandle:
        ...

"""
Conversation engine.

Wires the session store, the streaming completion pipeline, background
enrichment, voice capture, speech synthesis and persistence together and
exposes the user-level operations of the assistant.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set

from openai import AsyncOpenAI

from .conversation.enrichment import BackgroundEnrichment
from .conversation.models import ImageAttachment, Message, VoiceState
from .conversation.pipeline import StreamingCompletionPipeline, TurnOutcome
from .conversation.state import ConversationState, SessionStore, StoreEvent, StoreEventKind
from .core.config import Config
from .core.exceptions import ConfigurationError, NoAudioProducedError, ValidationError
from .core.logging import set_turn_context
from .core.persistence import (
    JSONPersistenceService,
    PersistenceDegradationStrategy,
    SaveOutcome,
)
from .core.protocols import (
    AudioOutput,
    CompletionService,
    PersistenceService,
    PlaybackHandle,
    RecognitionCapability,
    SpeechSynthesisService,
)
from .services import BaseService, OpenAICompletionService, OpenAISpeechService
from .speech.playback import get_audio_output
from .speech.synthesis import SpeechSynthesisPipeline, StreamingPlayback
from .voice.capture import Scheduler, VoiceCaptureStateMachine
from .voice.recognition import MicrophoneRecognitionCapability

logger = logging.getLogger(__name__)


class ConversationEngine:
    """Facade over the conversation core."""

    def __init__(
        self,
        config: Config,
        completion: CompletionService,
        persistence: PersistenceService,
        speech: Optional[SpeechSynthesisService] = None,
        recognition: Optional[RecognitionCapability] = None,
        audio_output: Optional[AudioOutput] = None,
        scheduler: Optional[Scheduler] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.persistence = persistence
        self.completion = completion
        self.speech_service = speech
        self.on_notice = on_notice or (lambda notice: logger.warning(notice))

        self.store = SessionStore(
            ConversationState(model_variant=config.completion.default_variant)
        )
        self.enrichment = BackgroundEnrichment(self.store, completion, config.enrichment)
        self.pipeline = StreamingCompletionPipeline(
            self.store, completion, self.enrichment, config.retry, sleep
        )
        self.degradation = PersistenceDegradationStrategy(persistence, config.persistence)

        self.voice: Optional[VoiceCaptureStateMachine] = None
        if recognition is not None:
            self.voice = VoiceCaptureStateMachine(
                self.store, recognition, config.voice, scheduler, self.on_notice
            )

        self.speech: Optional[SpeechSynthesisPipeline] = None
        if speech is not None:
            self.speech = SpeechSynthesisPipeline(
                speech, config.retry, config.speech.sample_rate, sleep
            )
        self._audio_output = audio_output

        self.user_id: Optional[str] = None
        self.last_save: Optional[SaveOutcome] = None
        self._save_task: Optional["asyncio.Task[None]"] = None
        self._save_requested = False
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._unsubscribe = self.store.subscribe(self._on_store_event)

    @classmethod
    def from_config(
        cls, config: Config, client: Optional[AsyncOpenAI] = None
    ) -> "ConversationEngine":
        """Build an engine with the OpenAI, file and sounddevice adapters."""
        speech_service = OpenAISpeechService(
            config.speech, config.voice, config.completion, client
        )
        return cls(
            config=config,
            completion=OpenAICompletionService(config.completion, client),
            persistence=JSONPersistenceService(config.persistence),
            speech=speech_service,
            recognition=MicrophoneRecognitionCapability(
                speech_service.transcribe, config.voice
            ),
        )

    @property
    def audio_output(self) -> AudioOutput:
        if self._audio_output is None:
            self._audio_output = get_audio_output(self.config.speech.sample_rate)
        return self._audio_output

    # ---------------------- user and sessions ----------------------

    async def load_user(self, user_id: str) -> None:
        """Load a user's sessions and memory into the store."""
        self.user_id = None

        try:
            sessions = await self.persistence.fetch_sessions(user_id)
        except Exception as e:
            logger.error(f"Failed to load sessions for {user_id}: {e}")
            sessions = []
        try:
            memory = await self.persistence.fetch_memory(user_id)
        except Exception as e:
            logger.error(f"Failed to load memory for {user_id}: {e}")
            memory = ""

        self.store.load_sessions(sessions)
        self.store.set_memory(memory)
        self.user_id = user_id
        set_turn_context(user_id=user_id)
        logger.info(f"Loaded user {user_id}: {len(sessions)} sessions")

    def new_session(self) -> str:
        return self.store.create_session()

    def select_session(self, session_id: str) -> None:
        self.store.select_session(session_id)

    async def delete_session(self, session_id: str) -> None:
        if not self.store.has_session(session_id):
            return
        self.store.delete_session(session_id)
        if self.user_id is None:
            return
        try:
            await self.persistence.delete_session(self.user_id, session_id)
        except Exception as e:
            logger.error(f"Failed to delete stored session {session_id}: {e}")

    def set_model_variant(self, variant: str) -> None:
        if variant not in self.config.completion.model_variants:
            raise ValidationError(
                "model_variant",
                variant,
                f"expected one of {sorted(self.config.completion.model_variants)}",
            )
        self.store.set_model_variant(variant)

    # ---------------------- turns ----------------------

    async def submit(
        self,
        text: Optional[str] = None,
        attachment: Optional[ImageAttachment] = None,
        generate_image: bool = False,
    ) -> Optional[TurnOutcome]:
        """Send a message to the current session.

        Uses the pending input buffer when ``text`` is None. Creates a session
        when none is current.
        """
        if text is None:
            text = self.store.state.pending_input
        text = text.strip()
        if not text and attachment is None:
            return None
        if self.store.state.is_loading:
            logger.warning("A turn is already in flight for the current session")
            return None

        if self.voice is not None and self.voice.is_listening:
            self.voice.stop()

        session_id = self.store.state.current_session_id
        if session_id is None:
            session_id = self.store.create_session()

        self.store.set_pending_input("")
        return await self.pipeline.run_turn(session_id, text, attachment, generate_image)

    # ---------------------- voice ----------------------

    def toggle_voice(self) -> VoiceState:
        if self.voice is None:
            raise ConfigurationError(
                "Voice capture is not configured", component="ConversationEngine"
            )
        return self.voice.toggle()

    # ---------------------- speech ----------------------

    def find_message(self, message_id: str) -> Optional[Message]:
        for session in self.store.state.sessions.values():
            message = session.find_message(message_id)
            if message is not None:
                return message
        return None

    def _speakable_text(self, message_id: str) -> Optional[str]:
        if self.speech is None:
            raise ConfigurationError(
                "Speech synthesis is not configured", component="ConversationEngine"
            )
        message = self.find_message(message_id)
        if message is None or not message.text.strip():
            return None
        return message.text

    async def speak(self, message_id: str) -> Optional[PlaybackHandle]:
        """Read a message aloud; None when nothing could be played."""
        text = self._speakable_text(message_id)
        if text is None or self.speech is None:
            return None
        try:
            return await self.speech.speak(text, self.audio_output)
        except NoAudioProducedError as e:
            logger.warning(f"No audio for message {message_id}: {e}")
        except Exception as e:
            logger.error(f"Failed to play message {message_id}: {e}")
        return None

    def speak_streaming(self, message_id: str) -> Optional[StreamingPlayback]:
        """Start reading a message aloud as audio chunks arrive."""
        text = self._speakable_text(message_id)
        if text is None or self.speech is None:
            return None
        playback = self.speech.speak_streaming(text, self.audio_output)
        self._spawn(self._run_streaming(message_id, playback))
        return playback

    async def _run_streaming(self, message_id: str, playback: StreamingPlayback) -> None:
        try:
            await playback.run()
        except NoAudioProducedError as e:
            logger.warning(f"No audio for message {message_id}: {e}")
        except Exception as e:
            logger.error(f"Streaming playback of {message_id} failed: {e}")

    # ---------------------- autosave ----------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        if self.user_id is None:
            return
        if event.affects_sessions:
            self._schedule_save()
        elif event.kind is StoreEventKind.MEMORY_CHANGED:
            self._spawn(self._save_memory(self.user_id, self.store.state.memory))

    def _schedule_save(self) -> None:
        self._save_requested = True
        if self._save_task is None or self._save_task.done():
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running loop, save deferred to flush")
                return
            self._save_task = loop.create_task(self._autosave())

    async def _autosave(self) -> None:
        # Mutations arriving while a save runs are folded into one more save
        while self._save_requested and self.user_id is not None:
            self._save_requested = False
            try:
                self.last_save = await self.degradation.save(
                    self.user_id, self.store.snapshot()
                )
            except Exception as e:
                logger.error(f"Autosave failed: {e}")

    async def _save_memory(self, user_id: str, memory: str) -> None:
        try:
            await self.persistence.save_memory(user_id, memory)
        except Exception as e:
            logger.error(f"Failed to save memory: {e}")

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ---------------------- lifecycle ----------------------

    async def flush(self) -> None:
        """Wait for background enrichment, memory saves and the pending autosave."""
        await self.enrichment.drain()
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._save_requested and (self._save_task is None or self._save_task.done()):
            self._save_task = asyncio.get_running_loop().create_task(self._autosave())
        if self._save_task is not None:
            await self._save_task

    async def shutdown(self) -> None:
        """Stop voice capture, drain everything still in flight and close clients."""
        if self.voice is not None:
            self.voice.close()
        await self.flush()
        self._unsubscribe()
        for service in (self.completion, self.speech_service):
            if isinstance(service, BaseService):
                await service.shutdown()
        logger.info("Conversation engine shut down")

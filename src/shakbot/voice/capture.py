"""Voice capture state machine.

Continuous listening on top of a recognition capability whose resources may
stop on their own (for instance after each utterance). The caller's intent to
listen is tracked separately from the resource lifecycle: while the intent
holds, every unsolicited end transparently starts a fresh resource, and only
the silence timers or an explicit stop bring the machine back to idle.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol

from ..conversation.models import VoiceState
from ..conversation.state import SessionStore
from ..core.config import VoiceConfig
from ..core.exceptions import PermissionDeniedError, VoiceCaptureError
from ..core.protocols import (
    RecognitionCapability,
    RecognitionResource,
    RecognitionSegment,
)
from ..services.error_messages import ServiceErrorMessages

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Arms one-shot timers."""

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay_s, callback)


class _ResourceEvents:
    """Routes events of one resource generation back to the machine."""

    def __init__(self, machine: "VoiceCaptureStateMachine", generation: int):
        self._machine = machine
        self._generation = generation

    @property
    def stale(self) -> bool:
        return self._generation != self._machine._generation

    def on_result(self, segments: List[RecognitionSegment]) -> None:
        if not self.stale:
            self._machine._handle_result(segments)

    def on_error(self, error: VoiceCaptureError) -> None:
        if not self.stale:
            self._machine._handle_error(error)

    def on_end(self) -> None:
        if not self.stale:
            self._machine._handle_end()


class VoiceCaptureStateMachine:
    """Idle/Listening state machine with silence-driven shutdown."""

    def __init__(
        self,
        store: SessionStore,
        capability: RecognitionCapability,
        config: Optional[VoiceConfig] = None,
        scheduler: Optional[Scheduler] = None,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.capability = capability
        self.config = config or VoiceConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.on_notice = on_notice

        self._intent_listening = False
        self._resource: Optional[RecognitionResource] = None
        self._timer: Optional[TimerHandle] = None
        self._generation = 0
        self._closed = False

    @property
    def state(self) -> VoiceState:
        return self.store.state.voice_state

    @property
    def is_listening(self) -> bool:
        return self.state is VoiceState.LISTENING

    @property
    def has_live_resource(self) -> bool:
        return self._resource is not None

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    # ---------------------- caller transitions ----------------------

    def toggle(self) -> VoiceState:
        """Start listening when idle, stop when listening."""
        if self.is_listening:
            self.stop()
        else:
            self.start()
        return self.state

    def start(self) -> None:
        if self._closed:
            logger.warning("Voice capture is closed")
            return

        self._discard_resource()
        self._intent_listening = True
        if not self._acquire_resource():
            return

        self.store.set_voice_state(VoiceState.LISTENING)
        self._arm_timer(self.config.bootstrap_silence_s)
        logger.info("Voice capture started")

    def stop(self) -> None:
        """Stop any live resource, clear timers and return to idle."""
        self._intent_listening = False
        self._cancel_timer()
        self._discard_resource()
        self.store.set_voice_state(VoiceState.IDLE)
        self.store.set_interim_transcript("")

    def close(self) -> None:
        """Tear down for good; later toggles are ignored."""
        self.stop()
        self._closed = True

    # ---------------------- resource lifecycle ----------------------

    def _acquire_resource(self) -> bool:
        self._generation += 1
        try:
            self._resource = self.capability.create(
                _ResourceEvents(self, self._generation)
            )
            self._resource.start()
        except PermissionDeniedError as e:
            logger.warning(f"Recognition start refused: {e}")
            self._deny_permission()
            return False
        except Exception as e:
            logger.error(f"Failed to start recognition: {e}")
            self.stop()
            return False
        return True

    def _discard_resource(self) -> None:
        resource = self._resource
        if resource is None:
            return
        self._resource = None
        # Events from the old resource are ignored from here on
        self._generation += 1
        try:
            resource.stop()
        except Exception as e:
            logger.debug(f"Error stopping recognition resource: {e}")

    def _deny_permission(self) -> None:
        self.stop()
        if self.on_notice is not None:
            self.on_notice(ServiceErrorMessages.MICROPHONE_PERMISSION_DENIED)

    # ---------------------- timers ----------------------

    def _arm_timer(self, delay_s: float) -> None:
        self._cancel_timer()
        self._timer = self.scheduler.call_later(delay_s, self._on_silence)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_silence(self) -> None:
        self._timer = None
        logger.info("Silence timeout, stopping voice capture")
        self.stop()

    # ---------------------- resource events ----------------------

    def _handle_result(self, segments: List[RecognitionSegment]) -> None:
        self._arm_timer(self.config.silence_s)

        final = "".join(s.text for s in segments if s.is_final)
        interim = "".join(s.text for s in segments if not s.is_final)
        if final.strip():
            self.store.append_pending_input(final)
        self.store.set_interim_transcript(interim)

    def _handle_error(self, error: VoiceCaptureError) -> None:
        if isinstance(error, PermissionDeniedError):
            logger.warning("Microphone permission denied")
            self._deny_permission()
            return
        logger.debug(f"Recognition error ignored: {error}")

    def _handle_end(self) -> None:
        self._resource = None
        if self._intent_listening:
            logger.debug("Recognition ended on its own, restarting")
            self._acquire_resource()
            return

        self.store.set_voice_state(VoiceState.IDLE)
        self.store.set_interim_transcript("")

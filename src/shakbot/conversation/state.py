"""
Authoritative conversation state and its mutation API.

``SessionStore`` is the single writer of sessions and messages. Every other
component expresses intent through its methods; readers receive copies.
Mutations run to completion synchronously, so under cooperative scheduling
no two of them ever interleave. Mutations targeting a session that no longer
exists are silent no-ops.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from .models import (
    DEFAULT_SESSION_TITLE,
    ChatSession,
    Message,
    ModelMessage,
    VoiceState,
)

logger = logging.getLogger(__name__)


class StoreEventKind(Enum):
    """Kinds of committed mutations."""

    SESSIONS_LOADED = "sessions_loaded"
    SESSION_CREATED = "session_created"
    SESSION_SELECTED = "session_selected"
    SESSION_DELETED = "session_deleted"
    SESSION_RENAMED = "session_renamed"
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_FINALIZED = "message_finalized"
    MEMORY_CHANGED = "memory_changed"
    LOADING_CHANGED = "loading_changed"
    INPUT_CHANGED = "input_changed"
    VOICE_CHANGED = "voice_changed"
    MODEL_CHANGED = "model_changed"


# Mutations that change the persisted session collection
SESSION_COLLECTION_EVENTS = frozenset(
    {
        StoreEventKind.SESSION_CREATED,
        StoreEventKind.SESSION_DELETED,
        StoreEventKind.SESSION_RENAMED,
        StoreEventKind.MESSAGE_APPENDED,
        StoreEventKind.MESSAGE_UPDATED,
        StoreEventKind.MESSAGE_FINALIZED,
    }
)


@dataclass(frozen=True)
class StoreEvent:
    """Notification emitted after a committed mutation."""

    kind: StoreEventKind
    session_id: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def affects_sessions(self) -> bool:
        return self.kind in SESSION_COLLECTION_EVENTS


StoreListener = Callable[[StoreEvent], None]


@dataclass
class ConversationState:
    """All mutable conversation state in one place."""

    sessions: Dict[str, ChatSession] = field(default_factory=dict)
    current_session_id: Optional[str] = None
    loading_sessions: Set[str] = field(default_factory=set)
    memory: str = ""
    memory_version: int = 0
    voice_state: VoiceState = VoiceState.IDLE
    model_variant: str = "fast"
    pending_input: str = ""
    interim_transcript: str = ""

    @property
    def is_loading(self) -> bool:
        """True iff a primary turn is in flight for the current session."""
        return (
            self.current_session_id is not None
            and self.current_session_id in self.loading_sessions
        )


def append_transcript(buffer: str, segment: str) -> str:
    """Append a recognized segment to the input buffer with one separating space."""
    segment = segment.strip()
    trimmed = buffer.strip()
    if not segment:
        return trimmed
    if not trimmed:
        return segment
    return f"{trimmed} {segment}"


class SessionStore:
    """Single mutation API over ``ConversationState``."""

    def __init__(self, state: Optional[ConversationState] = None):
        self._state = state or ConversationState()
        self._message_ids: Set[str] = {
            m.id for s in self._state.sessions.values() for m in s.messages
        }
        self._listeners: List[StoreListener] = []

    # ---------------------- observation ----------------------

    @property
    def state(self) -> ConversationState:
        """Live state; treat as read-only outside this class."""
        return self._state

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener called after each committed mutation."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: StoreEventKind, session_id: Optional[str] = None,
              message_id: Optional[str] = None) -> None:
        event = StoreEvent(kind=kind, session_id=session_id, message_id=message_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Store listener failed on {kind.value}: {e}")

    # ---------------------- reads ----------------------

    def has_session(self, session_id: str) -> bool:
        return session_id in self._state.sessions

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        """Return a copy of the session, or None if it does not exist."""
        session = self._state.sessions.get(session_id)
        return copy.deepcopy(session) if session is not None else None

    def current_session(self) -> Optional[ChatSession]:
        if self._state.current_session_id is None:
            return None
        return self.get_session(self._state.current_session_id)

    def snapshot(self) -> List[ChatSession]:
        """Copy of all sessions in creation order."""
        return copy.deepcopy(list(self._state.sessions.values()))

    def message_count(self, session_id: str) -> int:
        session = self._state.sessions.get(session_id)
        return len(session.messages) if session is not None else 0

    # ---------------------- session mutations ----------------------

    def load_sessions(self, sessions: Iterable[ChatSession]) -> None:
        """Replace the whole collection and select the most recent session."""
        loaded: Dict[str, ChatSession] = {}
        for session in sessions:
            loaded[session.id] = copy.deepcopy(session)

        self._state.sessions = loaded
        self._state.loading_sessions.clear()
        self._message_ids = {m.id for s in loaded.values() for m in s.messages}
        self._state.current_session_id = next(reversed(loaded), None) if loaded else None
        logger.info(f"Loaded {len(loaded)} sessions")
        self._emit(StoreEventKind.SESSIONS_LOADED, self._state.current_session_id)

    def create_session(self, title: str = DEFAULT_SESSION_TITLE, select: bool = True) -> str:
        """Create an empty session and (by default) make it current."""
        session = ChatSession(title=title)
        self._state.sessions[session.id] = session
        logger.debug(f"Created session {session.id}")
        self._emit(StoreEventKind.SESSION_CREATED, session.id)
        if select:
            self.select_session(session.id)
        return session.id

    def select_session(self, session_id: str) -> None:
        if session_id not in self._state.sessions:
            logger.debug(f"Ignoring select of unknown session {session_id}")
            return
        self._state.current_session_id = session_id
        self._emit(StoreEventKind.SESSION_SELECTED, session_id)

    def delete_session(self, session_id: str) -> None:
        """Delete a session; if it was current select the most recent remaining one."""
        if self._state.sessions.pop(session_id, None) is None:
            return
        self._state.loading_sessions.discard(session_id)

        if self._state.current_session_id == session_id:
            self._state.current_session_id = next(reversed(self._state.sessions), None)

        logger.debug(f"Deleted session {session_id}")
        self._emit(StoreEventKind.SESSION_DELETED, session_id)

    def rename_session(self, session_id: str, title: str) -> None:
        session = self._state.sessions.get(session_id)
        if session is None:
            return
        session.title = title
        self._emit(StoreEventKind.SESSION_RENAMED, session_id)

    # ---------------------- message mutations ----------------------

    def append_message(self, session_id: str, message: Message) -> bool:
        """Append a message; False if the session is gone or the id is reused."""
        session = self._state.sessions.get(session_id)
        if session is None:
            return False
        if message.id in self._message_ids:
            logger.warning(f"Rejecting duplicate message id {message.id}")
            return False

        session.messages.append(copy.deepcopy(message))
        self._message_ids.add(message.id)
        self._emit(StoreEventKind.MESSAGE_APPENDED, session_id, message.id)
        return True

    def update_message_text(self, session_id: str, message_id: str, text: str) -> bool:
        """Replace a streaming model message's text (last write wins)."""
        session = self._state.sessions.get(session_id)
        if session is None:
            return False
        message = session.find_message(message_id)
        if not isinstance(message, ModelMessage):
            return False
        if message.finalized:
            logger.warning(f"Ignoring update to finalized message {message_id}")
            return False
        if message.text == text:
            return True

        message.text = text
        self._emit(StoreEventKind.MESSAGE_UPDATED, session_id, message_id)
        return True

    def finalize_message(self, session_id: str, message_id: str) -> bool:
        session = self._state.sessions.get(session_id)
        if session is None:
            return False
        message = session.find_message(message_id)
        if not isinstance(message, ModelMessage) or message.finalized:
            return False

        message.finalized = True
        self._emit(StoreEventKind.MESSAGE_FINALIZED, session_id, message_id)
        return True

    # ---------------------- turn bookkeeping ----------------------

    def begin_turn(self, session_id: str) -> bool:
        """Mark a primary turn in flight; False if one already is."""
        if session_id not in self._state.sessions:
            return False
        if session_id in self._state.loading_sessions:
            return False
        self._state.loading_sessions.add(session_id)
        self._emit(StoreEventKind.LOADING_CHANGED, session_id)
        return True

    def end_turn(self, session_id: str) -> None:
        if session_id in self._state.loading_sessions:
            self._state.loading_sessions.discard(session_id)
            self._emit(StoreEventKind.LOADING_CHANGED, session_id)

    # ---------------------- ambient state ----------------------

    def set_memory(self, memory: str) -> int:
        """Replace long-term memory; returns the new memory version."""
        self._state.memory = memory
        self._state.memory_version += 1
        self._emit(StoreEventKind.MEMORY_CHANGED)
        return self._state.memory_version

    def set_model_variant(self, variant: str) -> None:
        self._state.model_variant = variant
        self._emit(StoreEventKind.MODEL_CHANGED)

    def set_pending_input(self, text: str) -> None:
        self._state.pending_input = text
        self._emit(StoreEventKind.INPUT_CHANGED)

    def append_pending_input(self, segment: str) -> None:
        self.set_pending_input(append_transcript(self._state.pending_input, segment))

    def take_pending_input(self) -> str:
        """Return the trimmed input buffer and clear it."""
        text = self._state.pending_input.strip()
        self.set_pending_input("")
        return text

    def set_interim_transcript(self, text: str) -> None:
        if self._state.interim_transcript == text:
            return
        self._state.interim_transcript = text
        self._emit(StoreEventKind.INPUT_CHANGED)

    def set_voice_state(self, voice_state: VoiceState) -> None:
        if self._state.voice_state is voice_state:
            return
        self._state.voice_state = voice_state
        self._emit(StoreEventKind.VOICE_CHANGED)

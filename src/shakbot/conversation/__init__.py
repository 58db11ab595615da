"""
Conversation core.

Session state, the streaming completion pipeline and background enrichment.
"""

from .models import (
    DEFAULT_SESSION_TITLE,
    ChatSession,
    ErrorMessage,
    ImageAttachment,
    Message,
    ModelMessage,
    Role,
    UserMessage,
    VoiceState,
)
from .state import ConversationState, SessionStore, StoreEvent, StoreEventKind
from .enrichment import BackgroundEnrichment
from .pipeline import StreamingCompletionPipeline, TurnOutcome

__all__ = [
    "BackgroundEnrichment",
    "ChatSession",
    "ConversationState",
    "DEFAULT_SESSION_TITLE",
    "ErrorMessage",
    "ImageAttachment",
    "Message",
    "ModelMessage",
    "Role",
    "SessionStore",
    "StoreEvent",
    "StoreEventKind",
    "StreamingCompletionPipeline",
    "TurnOutcome",
    "UserMessage",
    "VoiceState",
]

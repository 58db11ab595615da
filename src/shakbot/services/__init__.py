"""Top-level services package.

This package contains the service adapters the conversation core talks to:
completion, speech synthesis and transcription, plus shared user-facing
messages and prompt templates.
"""

from .base_service import BaseService
from .completion_service import OpenAICompletionService
from .error_messages import ServiceErrorMessages
from .speech_service import OpenAISpeechService

__all__ = [
    "BaseService",
    "OpenAICompletionService",
    "OpenAISpeechService",
    "ServiceErrorMessages",
]

"""Voice capture: the listening state machine and the microphone capability."""

from .capture import AsyncioScheduler, Scheduler, VoiceCaptureStateMachine
from .recognition import MicrophoneRecognitionCapability

__all__ = [
    "AsyncioScheduler",
    "MicrophoneRecognitionCapability",
    "Scheduler",
    "VoiceCaptureStateMachine",
]

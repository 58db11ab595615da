"""
Exception hierarchy for ShakBot.

Provides structured error handling with specific error types for the
conversation core, its outbound services and the storage layer.
"""

import functools
from typing import Any, Callable, Dict, Optional, TypeVar

F = TypeVar("F", bound=Callable[..., Any])


class ShakbotError(Exception):
    """Base exception for all ShakBot errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        component: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.component = component

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = f"[{self.component or 'ShakBot'}] {self.message}"
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "component": self.component,
            "details": self.details,
        }


class ConfigurationError(ShakbotError):
    """Exception raised when configuration is invalid or missing."""

    pass


class ServiceError(ShakbotError):
    """Exception raised when a remote service call fails."""

    pass


class AudioProcessingError(ShakbotError):
    """Exception raised when audio decoding or playback fails."""

    pass


class VoiceCaptureError(ShakbotError):
    """Exception raised by the speech recognition capability."""

    pass


class PersistenceError(ShakbotError):
    """Exception raised when the persistence backend fails."""

    pass


# Specific error types for the conversation core


class RateLimitedError(ServiceError):
    """Exception raised when the service rejects a call for quota reasons."""

    def __init__(self, message: str = "Rate limit exceeded", **kwargs: Any) -> None:
        super().__init__(message, error_code="RATE_LIMITED", **kwargs)
        self.status_code = 429


class TransientServiceError(ServiceError):
    """Exception raised for service failures that are surfaced, not retried."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, error_code="SERVICE_ERROR", **kwargs)


class PermissionDeniedError(VoiceCaptureError):
    """Exception raised when microphone access is refused."""

    def __init__(self, message: str = "Microphone permission denied", **kwargs: Any) -> None:
        super().__init__(message, error_code="PERMISSION_DENIED", **kwargs)


class StorageCapacityExceededError(PersistenceError):
    """Exception raised when a save would exceed the storage quota."""

    def __init__(self, attempted_bytes: int, capacity_bytes: int, **kwargs: Any) -> None:
        super().__init__(
            f"Storage capacity exceeded: {attempted_bytes}/{capacity_bytes} bytes",
            error_code="STORAGE_CAPACITY_EXCEEDED",
            details={
                "attempted_bytes": attempted_bytes,
                "capacity_bytes": capacity_bytes,
            },
            **kwargs,
        )
        self.attempted_bytes = attempted_bytes
        self.capacity_bytes = capacity_bytes


class NoAudioProducedError(AudioProcessingError):
    """Exception raised when speech synthesis returns no audio."""

    def __init__(self, message: str = "No audio generated", **kwargs: Any) -> None:
        super().__init__(message, error_code="NO_AUDIO_PRODUCED", **kwargs)


class ValidationError(ShakbotError):
    """Exception raised when input validation fails."""

    def __init__(self, field: str, value: Any, reason: str, **kwargs: Any) -> None:
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            error_code="VALIDATION_ERROR",
            details={
                "field": field,
                "value": str(value),
                "reason": reason,
            },
            **kwargs,
        )


# Error handling utilities


def handle_audio_error(func: F) -> F:
    """Decorator to wrap audio decoding failures in AudioProcessingError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ShakbotError:
            raise
        except Exception as e:
            raise AudioProcessingError(
                message=f"Audio processing error in {func.__name__}: {str(e)}",
                component=func.__name__,
            ) from e

    return wrapper  # type: ignore

"""
Centralized user-facing messages for the conversation core.

Provides consistent fallback texts for failed turns, image replies, voice
capture notices and storage compaction markers.
"""


class ServiceErrorMessages:
    """Centralized user-facing messages."""

    # Completion
    TURN_FAILED = "I apologize, but I encountered an error. Please try again."
    TURN_RATE_LIMITED = (
        "**Rate Limit Exceeded**: My energy is temporarily depleted (Error 429). "
        "Please wait 30 seconds and try again."
    )

    # Image replies without accompanying text
    IMAGE_EDITED = "Here is the edited image:"
    IMAGE_GENERATED = "Here is the generated image:"
    IMAGE_NO_OUTPUT = "Done."

    # Voice capture
    MICROPHONE_PERMISSION_DENIED = "Microphone permission denied."

    # Speech synthesis
    TTS_NO_AUDIO = "No audio was generated."

    # Storage compaction marker appended to stripped messages
    IMAGE_HIDDEN_MARKER = "\n\n*[Image hidden from history to save space]*"

    @classmethod
    def get_turn_failure(cls, rate_limited: bool) -> str:
        """Get the error message text for a failed primary turn."""
        return cls.TURN_RATE_LIMITED if rate_limited else cls.TURN_FAILED

    @classmethod
    def get_image_reply(cls, has_image: bool, edited: bool) -> str:
        """Get the fallback reply text for an image request."""
        if not has_image:
            return cls.IMAGE_NO_OUTPUT
        return cls.IMAGE_EDITED if edited else cls.IMAGE_GENERATED


# Convenience constants for direct import
TURN_FAILED = ServiceErrorMessages.TURN_FAILED
TURN_RATE_LIMITED = ServiceErrorMessages.TURN_RATE_LIMITED
MICROPHONE_PERMISSION_DENIED = ServiceErrorMessages.MICROPHONE_PERMISSION_DENIED
IMAGE_HIDDEN_MARKER = ServiceErrorMessages.IMAGE_HIDDEN_MARKER

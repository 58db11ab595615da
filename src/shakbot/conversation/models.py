"""
Conversation data model.

Messages are a closed sum type: a user turn, a model turn, or an error
notice shown in place of a failed model turn. Serialization keeps the flat
record shape used by the storage backends (``role``, ``imageUrl``,
``isError``).
"""

import base64
import binascii
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

DEFAULT_SESSION_TITLE = "New Conversation"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    """Generate a globally unique identifier."""
    return str(uuid.uuid4())


class Role(Enum):
    """Author of a message."""

    USER = "user"
    MODEL = "model"


class VoiceState(Enum):
    """Externally visible state of voice capture."""

    IDLE = "idle"
    LISTENING = "listening"


@dataclass(frozen=True)
class ImageAttachment:
    """Binary image payload with its media type."""

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageAttachment":
        """Parse a ``data:<mime>;base64,<payload>`` URI."""
        if not uri.startswith("data:") or ";base64," not in uri:
            raise ValueError("Not a base64 data URI")
        header, payload = uri[len("data:"):].split(";base64,", 1)
        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e
        return cls(data=data, mime_type=header or "application/octet-stream")


@dataclass
class UserMessage:
    """A turn submitted by the user."""

    text: str
    attachment: Optional[ImageAttachment] = None
    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)

    role = Role.USER
    is_error = False


@dataclass
class ModelMessage:
    """A model turn; text grows while streaming until finalized."""

    text: str = ""
    attachment: Optional[ImageAttachment] = None
    finalized: bool = False
    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)

    role = Role.MODEL
    is_error = False


@dataclass
class ErrorMessage:
    """A model-side notice that replaced a failed turn."""

    text: str
    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)

    role = Role.MODEL
    is_error = True
    attachment = None


Message = Union[UserMessage, ModelMessage, ErrorMessage]


def message_to_dict(message: Message) -> Dict[str, Any]:
    """Convert a message to its storage record."""
    record: Dict[str, Any] = {
        "id": message.id,
        "role": message.role.value,
        "text": message.text,
        "timestamp": message.timestamp,
        "isError": message.is_error,
    }
    if message.attachment is not None:
        record["imageUrl"] = message.attachment.to_data_uri()
    return record


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Rebuild a message from its storage record."""
    attachment = None
    image_url = data.get("imageUrl")
    if image_url:
        try:
            attachment = ImageAttachment.from_data_uri(image_url)
        except ValueError:
            attachment = None

    common = {
        "id": str(data["id"]),
        "text": str(data.get("text", "")),
        "timestamp": int(data.get("timestamp", 0)),
    }
    if data.get("isError"):
        return ErrorMessage(**common)
    if Role(data.get("role", Role.USER.value)) is Role.USER:
        return UserMessage(attachment=attachment, **common)
    return ModelMessage(attachment=attachment, finalized=True, **common)


@dataclass
class ChatSession:
    """A titled, ordered conversation."""

    id: str = field(default_factory=new_id)
    title: str = DEFAULT_SESSION_TITLE
    messages: List[Message] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)

    def find_message(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "messages": [message_to_dict(m) for m in self.messages],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatSession":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_SESSION_TITLE,
            messages=[message_from_dict(m) for m in data.get("messages", [])],
            created_at=int(data.get("createdAt", 0)),
        )

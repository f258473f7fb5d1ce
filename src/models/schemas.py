import re
import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Thread ids handed out by the Assistants API
THREAD_ID_PATTERN = re.compile(r"^thread_[A-Za-z0-9]+$")


def is_valid_thread_id(value: str | None) -> bool:
    """Return True if value looks like an upstream thread id."""
    return bool(value) and THREAD_ID_PATTERN.match(value) is not None


class SSEEventType(str, Enum):
    """Event names emitted on the chat stream."""

    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"
    DEBUG = "debug"


class ChatRequest(BaseModel):
    """JSON payload for the streaming chat endpoint.

    Attributes:
        message: User's question or prompt. May be empty when files are sent.
        thread_id: Optional thread for conversation continuity.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    thread_id: str | None = Field(None, alias="threadId")

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: Any) -> Any:
        """Strip whitespace from message before validation."""
        if v is None:
            return ""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("thread_id", mode="before")
    @classmethod
    def blank_thread_id(cls, v: Any) -> Any:
        """Treat an empty thread id as absent."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ChunkData(BaseModel):
    """Payload of a `chunk` event."""

    text: str


class DoneData(BaseModel):
    """Payload of the terminal `done` event."""

    thread_id: str
    message_id: str | None = None


class ErrorData(BaseModel):
    """Payload of the terminal `error` event."""

    error: str


class DebugData(BaseModel):
    """Payload of a verbose `debug` event."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    file_id: str | None = None


class FilePart(BaseModel):
    type: Literal["file"] = "file"
    file_id: str | None = None
    filename: str = "download"


class UnknownPart(BaseModel):
    """Upstream content block we do not understand, passed through as-is."""

    type: str
    raw: dict[str, Any] = Field(default_factory=dict)


ContentPart = TextPart | ImagePart | FilePart | UnknownPart


class NormalizedMessage(BaseModel):
    """A thread message reshaped into role + ordered content parts.

    Attributes:
        id: Upstream message id.
        role: 'user' or 'assistant'.
        created_at: Unix timestamp (seconds).
        parts: Content parts in upstream order.
    """

    id: str
    role: str
    created_at: int = Field(default_factory=lambda: int(time.time()))
    parts: list[ContentPart] = Field(default_factory=list)

    def text_parts(self) -> list[str]:
        return [p.text for p in self.parts if isinstance(p, TextPart)]

    def attachment_parts(self) -> list[ImagePart | FilePart]:
        return [p for p in self.parts if isinstance(p, ImagePart | FilePart)]


class MessageListResponse(BaseModel):
    """Response of the thread message listing endpoint."""

    messages: list[NormalizedMessage]


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "ecosure-relay"

"""Pydantic models for API requests, responses and stream events.

Provides type safety, validation, and automatic OpenAPI documentation.

Models:
    - ChatRequest: Incoming JSON chat payload
    - ChunkData / DoneData / ErrorData / DebugData: SSE event payloads
    - TextPart / ImagePart / FilePart / UnknownPart: Tagged content parts
    - NormalizedMessage: Role + ordered content parts
    - MessageListResponse: Thread history response
"""

from src.models.schemas import (
    THREAD_ID_PATTERN,
    ChatRequest,
    ChunkData,
    ContentPart,
    DebugData,
    DoneData,
    ErrorData,
    FilePart,
    HealthResponse,
    ImagePart,
    MessageListResponse,
    NormalizedMessage,
    SSEEventType,
    TextPart,
    UnknownPart,
    is_valid_thread_id,
)

__all__ = [
    "THREAD_ID_PATTERN",
    "ChatRequest",
    "ChunkData",
    "ContentPart",
    "DebugData",
    "DoneData",
    "ErrorData",
    "FilePart",
    "HealthResponse",
    "ImagePart",
    "MessageListResponse",
    "NormalizedMessage",
    "SSEEventType",
    "TextPart",
    "UnknownPart",
    "is_valid_thread_id",
]

"""Streaming chat endpoint.

Accepts JSON or multipart requests and always answers with an SSE stream;
problems with the request itself are reported as an `error` event rather
than an HTTP error status, so the browser has a single error path.
"""

import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from src.api.dependencies import get_chat_relay
from src.assistant.config import RelayConfig, get_relay_config
from src.assistant.relay import ChatRelay, RelayRequest, format_sse
from src.assistant.uploads import LocalUpload, discard_uploads, spool_upload
from src.models.schemas import ChatRequest, ErrorData, SSEEventType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


class InvalidChatRequest(Exception):
    """Raised when the request body cannot be understood."""


def _event_stream(frames: AsyncGenerator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)


async def _single_error(message: str) -> AsyncGenerator[str]:
    yield format_sse(SSEEventType.ERROR, ErrorData(error=message))


async def _parse_form(request: Request, config: RelayConfig) -> RelayRequest:
    try:
        form = await request.form()
    except HTTPException as e:
        raise InvalidChatRequest(f"Invalid form data: {e.detail}") from e
    except MultiPartException as e:
        raise InvalidChatRequest(f"Invalid form data: {e.message}") from e

    message = form.get("message")
    thread_id = form.get("threadId") or form.get("thread_id")
    body = ChatRequest.model_validate(
        {
            "message": message if isinstance(message, str) else "",
            "threadId": thread_id if isinstance(thread_id, str) else None,
        }
    )

    files = [f for f in form.getlist("files") if isinstance(f, UploadFile) and f.filename]
    uploads: list[LocalUpload] = []
    try:
        for file in files:
            uploads.append(await spool_upload(config.upload_dir, file))
    except OSError as e:
        discard_uploads(uploads)
        raise InvalidChatRequest(f"Could not store upload: {e}") from e

    return RelayRequest(message=body.message, thread_id=body.thread_id, uploads=uploads)


async def _parse_json(request: Request) -> RelayRequest:
    raw = await request.body()
    try:
        body = ChatRequest.model_validate_json(raw or b"{}")
    except ValueError as e:
        raise InvalidChatRequest("Request body must be JSON with a 'message' string") from e
    return RelayRequest(message=body.message, thread_id=body.thread_id)


@router.post("/stream")
async def chat_stream(
    request: Request,
    relay: ChatRelay = Depends(get_chat_relay),
    config: RelayConfig = Depends(get_relay_config),
) -> StreamingResponse:
    """Stream the assistant's answer as server-sent events.

    Accepts either JSON ``{"message": ..., "threadId": ...}`` or multipart
    form data with ``message``, optional ``threadId`` and repeated ``files``.

    Events:
        chunk: ``{"text": ...}`` incremental answer text.
        done: ``{"thread_id": ..., "message_id": ...}`` terminal.
        error: ``{"error": ...}`` terminal.
    """
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(_FORM_TYPES):
            relay_request = await _parse_form(request, config)
        else:
            relay_request = await _parse_json(request)
    except InvalidChatRequest as e:
        logger.warning(f"Rejected chat request: {e}")
        return _event_stream(_single_error(str(e)))

    logger.info(
        f"Chat request: thread_id={relay_request.thread_id}, "
        f"message_length={len(relay_request.message)}, files={len(relay_request.uploads)}"
    )
    return _event_stream(relay.stream(relay_request))

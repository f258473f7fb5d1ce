"""Chat relay: one inbound request, one upstream run, one SSE response.

A producer task performs the upstream calls and writes frames into an
``EventSink``; the response generator only drains the sink. The sink is a
one-shot latch: after the first terminal event (``done`` or ``error``) every
further emission is dropped, so the timeout path and the normal completion
path can never both terminate a stream. Both paths run on the same event
loop, which makes a plain boolean sufficient.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing, suppress

from pydantic import BaseModel, Field

from src.assistant.client import AssistantClient, AssistantServiceError, UploadedFile
from src.assistant.config import RelayConfig
from src.assistant.events import (
    MessageCompleted,
    RelayEvent,
    RequiresAction,
    RunCompleted,
    RunStarted,
    StreamError,
    TextDelta,
)
from src.assistant.uploads import LocalUpload, discard_uploads
from src.models.schemas import ChunkData, DebugData, DoneData, ErrorData, SSEEventType

logger = logging.getLogger(__name__)

DEFAULT_FILE_PROMPT = "Please analyze the attached file(s) and summarize key insights."

EMPTY_REQUEST_ERROR = "Provide a message or at least one file."
INVALID_ASSISTANT_ERROR = "Invalid ASSISTANT_ID or not accessible with this API key."
REQUIRES_ACTION_ERROR = "Assistant requires action which is not implemented on server."
TIMEOUT_ERROR = "Stream timeout"
NO_OUTPUT_ERROR = (
    "No assistant output was produced for this run. Check assistant "
    "configuration (model/instructions/tools) and permissions."
)

# Newest-first page read when a run finished without streaming any text
FALLBACK_PAGE_SIZE = 5
# Upper bound on the best-effort run cancellation after a timeout
CANCEL_GRACE_SECONDS = 5.0


def format_sse(event: SSEEventType, payload: BaseModel) -> str:
    """Render one SSE frame."""
    return f"event: {event.value}\ndata: {payload.model_dump_json(exclude_none=True)}\n\n"


class RelayRequest(BaseModel):
    """Everything the relay needs from one inbound chat request.

    Attributes:
        message: User text (may be empty when files are attached).
        thread_id: Existing thread to continue, reused verbatim.
        uploads: Spooled attachments owned by this request.
    """

    message: str = ""
    thread_id: str | None = None
    uploads: list[LocalUpload] = Field(default_factory=list)


class EventSink:
    """Queue of SSE frames for a single response, closed by the first terminal event."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self.terminated = False
        self.sent_text = False

    def chunk(self, text: str) -> None:
        if self.terminated or not text:
            return
        self.sent_text = True
        self._queue.put_nowait(format_sse(SSEEventType.CHUNK, ChunkData(text=text)))

    def debug(self, event: RelayEvent) -> None:
        if self.terminated:
            return
        payload = DebugData(event=type(event).__name__, data=event.model_dump(mode="json"))
        self._queue.put_nowait(format_sse(SSEEventType.DEBUG, payload))

    def done(self, thread_id: str, message_id: str | None = None) -> None:
        self._terminate(
            format_sse(SSEEventType.DONE, DoneData(thread_id=thread_id, message_id=message_id))
        )

    def error(self, message: str) -> None:
        self._terminate(format_sse(SSEEventType.ERROR, ErrorData(error=message)))

    def close(self) -> None:
        """End the frame stream without emitting anything else."""
        self._queue.put_nowait(None)

    def _terminate(self, frame: str) -> None:
        if self.terminated:
            return
        self.terminated = True
        self._queue.put_nowait(frame)
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncGenerator[str]:
        while (frame := await self._queue.get()) is not None:
            yield frame


class _RunState:
    """Bookkeeping for one streaming run."""

    def __init__(self) -> None:
        self.run_id: str | None = None
        self.message_id: str | None = None
        self.streamed: dict[str | None, str] = {}


class ChatRelay:
    """Relays a chat turn to the hosted assistant and re-emits it as SSE."""

    def __init__(self, client: AssistantClient, config: RelayConfig) -> None:
        self._client = client
        self._config = config

    async def stream(self, request: RelayRequest) -> AsyncGenerator[str]:
        """Stream SSE frames for one chat request.

        Never raises: every failure ends the stream with an `error` frame.

        Args:
            request: The parsed chat request.

        Yields:
            Formatted SSE frames, ending with exactly one `done` or `error`.
        """
        sink = EventSink()
        task = asyncio.create_task(self._produce(request, sink))
        try:
            async for frame in sink.frames():
                yield frame
        finally:
            if not sink.terminated:
                # Client went away mid-stream
                task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _produce(self, request: RelayRequest, sink: EventSink) -> None:
        try:
            await self._relay(request, sink)
        except Exception as e:
            logger.error(f"Chat relay failed: {e}", exc_info=True)
            sink.error(str(e) or type(e).__name__)
        finally:
            discard_uploads(request.uploads)
            sink.close()

    async def _relay(self, request: RelayRequest, sink: EventSink) -> None:
        message = request.message.strip()
        if not message and not request.uploads:
            sink.error(EMPTY_REQUEST_ERROR)
            return

        missing = self._config.missing_settings()
        if missing:
            sink.error(f"Server not configured with {', '.join(missing)}")
            return

        assistant_id = self._config.assistant_id
        try:
            await self._client.retrieve_assistant(assistant_id)
        except AssistantServiceError as e:
            logger.warning(f"Assistant {assistant_id} not usable: {e}")
            sink.error(INVALID_ASSISTANT_ERROR)
            return

        thread_id = request.thread_id or await self._client.create_thread()
        uploaded = await self._upload_all(request.uploads)

        await self._client.post_message(thread_id, message or DEFAULT_FILE_PROMPT, uploaded)
        await self._stream_run(thread_id, assistant_id, sink)

    async def _upload_all(self, uploads: list[LocalUpload]) -> list[UploadedFile]:
        if not uploads:
            return []
        try:
            # A failed upload cancels its siblings before the temp files go
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(self._upload_one(u)) for u in uploads]
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from eg
        finally:
            discard_uploads(uploads)
        return [task.result() for task in tasks]

    async def _upload_one(self, upload: LocalUpload) -> UploadedFile:
        purpose = "vision" if upload.is_image else "assistants"
        file_id = await self._client.upload_file(upload.path, upload.filename, purpose)
        return UploadedFile(
            file_id=file_id,
            filename=upload.filename,
            content_type=upload.content_type,
        )

    async def _stream_run(self, thread_id: str, assistant_id: str, sink: EventSink) -> None:
        state = _RunState()
        try:
            async with (
                asyncio.timeout(self._config.stream_timeout),
                aclosing(self._client.stream_run(thread_id, assistant_id)) as events,
            ):
                async for event in events:
                    if self._config.debug_sse:
                        sink.debug(event)
                    self._handle(event, thread_id, state, sink)
                    if sink.terminated:
                        break
        except TimeoutError:
            logger.warning(
                f"Run on thread {thread_id} exceeded {self._config.stream_timeout_ms} ms"
            )
            await self._cancel_run(thread_id, state.run_id)
            sink.error(TIMEOUT_ERROR)
            return

        if not sink.terminated:
            # Stream ended without a terminal event
            if not sink.sent_text:
                await self._fallback_text(thread_id, sink)
            sink.done(thread_id, state.message_id)

    def _handle(self, event: RelayEvent, thread_id: str, state: _RunState, sink: EventSink) -> None:
        match event:
            case RunStarted(run_id=run_id):
                state.run_id = run_id
            case TextDelta(text=text, message_id=message_id):
                state.streamed[message_id] = state.streamed.get(message_id, "") + text
                if message_id:
                    state.message_id = message_id
                sink.chunk(text)
            case MessageCompleted(role="assistant"):
                self._complete_message(event, thread_id, state, sink)
            case RunCompleted() if not event.succeeded:
                sink.error(f"Run status: {event.status}. {event.reason}")
            case RunCompleted(run_id=run_id):
                state.run_id = run_id or state.run_id
            case RequiresAction():
                sink.error(REQUIRES_ACTION_ERROR)
            case StreamError(message=message):
                sink.error(message)
            case _:
                logger.debug(f"Ignoring stream event {event!r}")

    def _complete_message(
        self,
        event: MessageCompleted,
        thread_id: str,
        state: _RunState,
        sink: EventSink,
    ) -> None:
        full_text = "".join(event.texts)
        streamed = state.streamed.get(event.message_id) or state.streamed.get(None, "")
        if not streamed:
            sink.chunk(full_text)
        elif full_text.startswith(streamed):
            sink.chunk(full_text[len(streamed):])
        # Otherwise the persisted text diverged; the UI reconciles from the listing
        sink.done(thread_id, event.message_id or state.message_id)

    async def _cancel_run(self, thread_id: str, run_id: str | None) -> None:
        if not run_id:
            return
        try:
            async with asyncio.timeout(CANCEL_GRACE_SECONDS):
                await self._client.cancel_run(thread_id, run_id)
        except (AssistantServiceError, TimeoutError) as e:
            logger.warning(f"Could not cancel run {run_id}: {e}")

    async def _fallback_text(self, thread_id: str, sink: EventSink) -> None:
        """Forward the latest assistant text when nothing was streamed.

        Best effort: the store may not yet expose the message the run just
        produced.
        """
        try:
            recent = await self._client.list_messages(
                thread_id, order="desc", limit=FALLBACK_PAGE_SIZE
            )
        except AssistantServiceError as e:
            logger.warning(f"Fallback read for thread {thread_id} failed: {e}")
            return

        assistant = next((m for m in recent if m.role == "assistant"), None)
        if assistant is None:
            sink.error(NO_OUTPUT_ERROR)
            return
        text = next((t for t in assistant.text_parts() if t), "")
        sink.chunk(text)

"""Client side of the chat stream: SSE parsing and conversation state.

Kept free of NiceGUI so the whole consumer can be driven against the real
API in tests.
"""

import asyncio
import codecs
import json
import logging
import os
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, Field

from src.assistant.config import get_relay_config
from src.models.schemas import (
    MessageListResponse,
    NormalizedMessage,
    SSEEventType,
    TextPart,
    is_valid_thread_id,
)

logger = logging.getLogger(__name__)


def api_base_url() -> str:
    """Base URL of the relay API as seen from the UI process.

    `API_BASE_URL` wins when set; otherwise the relay listens on this host at
    the configured port.
    """
    return os.getenv("API_BASE_URL") or f"http://localhost:{get_relay_config().port}"


# Cosmetic "thinking" indicator, cleared regardless of stream state
ELLIPSIS_SECONDS = 30.0

_JSON_EVENTS = {e.value for e in SSEEventType}


class SSEMessage(BaseModel):
    """One parsed server-sent event."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


def parse_block(block: str) -> SSEMessage | None:
    """Parse one blank-line-delimited event block.

    Returns None when the block lacks an `event:` or `data:` line. Data that
    fails to parse becomes an empty payload.
    """
    lines = block.split("\n")
    event_line = next((line for line in lines if line.startswith("event:")), None)
    data_line = next((line for line in lines if line.startswith("data:")), None)
    if event_line is None or data_line is None:
        return None

    name = event_line[len("event:"):].strip()
    raw = data_line[len("data:"):].strip()
    data: dict[str, Any] = {}
    if name in _JSON_EVENTS:
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            data = parsed
    else:
        data = {"raw": raw}
    return SSEMessage(event=name, data=data)


class SSEParser:
    """Incremental parser fed with raw response bytes."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text of the incomplete trailing block."""
        return self._buffer

    def feed(self, data: bytes) -> list[SSEMessage]:
        """Consume bytes and return every event completed by them."""
        self._buffer = (self._buffer + self._decoder.decode(data)).replace("\r\n", "\n")
        *blocks, self._buffer = self._buffer.split("\n\n")
        messages = []
        for block in blocks:
            message = parse_block(block)
            if message is None:
                logger.debug(f"Skipping malformed SSE block: {block!r}")
                continue
            messages.append(message)
        return messages


class OutgoingFile(BaseModel):
    """A file selected in the composer."""

    name: str
    content: bytes
    content_type: str | None = None


class ChatSession:
    """Conversation state shown by the page.

    Attributes:
        thread_id: Current upstream thread ('' before the first answer).
        messages: Rendered messages; provisional while streaming.
        is_loading: A request is in flight (composer disabled).
        is_streaming: Assistant text is still arriving.
        show_ellipsis: Cosmetic indicator, auto-cleared after a delay.
        error: Last error to surface to the user.
        unreconciled: The shown answer is the streamed text, not the stored one.
        streaming_message: Provisional assistant message fed by chunks.
    """

    def __init__(
        self,
        thread_id: str = "",
        on_thread_change: Callable[[str], None] | None = None,
        ellipsis_seconds: float = ELLIPSIS_SECONDS,
    ) -> None:
        self.thread_id = thread_id
        self.messages: list[NormalizedMessage] = []
        self.is_loading = False
        self.is_streaming = False
        self.show_ellipsis = False
        self.error = ""
        self.unreconciled = False
        self.streaming_message: NormalizedMessage | None = None
        self.ellipsis_seconds = ellipsis_seconds
        self._on_thread_change = on_thread_change
        self._ellipsis_timer: asyncio.TimerHandle | None = None

    @property
    def is_current_streaming(self) -> bool:
        return self.is_streaming and self.streaming_message is not None

    def begin_turn(self) -> None:
        self.is_loading = True
        self.is_streaming = True
        self.error = ""
        self.unreconciled = False
        self._start_ellipsis()

    def start_stream(self) -> None:
        self.streaming_message = NormalizedMessage(
            id=f"assist-{int(time.time())}",
            role="assistant",
            parts=[TextPart(text="")],
        )
        self.messages.append(self.streaming_message)

    def append_chunk(self, text: str) -> None:
        if self.streaming_message is None:
            return
        part = self.streaming_message.parts[0]
        if isinstance(part, TextPart):
            part.text += text

    def adopt_thread(self, thread_id: str) -> None:
        if thread_id == self.thread_id:
            return
        self.thread_id = thread_id
        if self._on_thread_change is not None:
            self._on_thread_change(thread_id)

    def finish_stream(self) -> None:
        self.is_loading = False
        self.is_streaming = False
        self.streaming_message = None

    def replace_messages(self, messages: list[NormalizedMessage]) -> None:
        self.messages = list(messages)

    def keep_streamed(self, reason: str) -> None:
        """Leave the streamed answer in place when the stored thread is unavailable."""
        self.unreconciled = True
        self.error = f"Failed to fetch messages: {reason}"

    def fail(self, error: str) -> None:
        if self.streaming_message is not None and self.streaming_message in self.messages:
            self.messages.remove(self.streaming_message)
        self.finish_stream()
        self.error = error
        self._stop_ellipsis()

    def reset(self) -> None:
        """Start a fresh analysis."""
        self._stop_ellipsis()
        self.messages = []
        self.finish_stream()
        self.error = ""
        self.unreconciled = False
        self.adopt_thread("")

    def _start_ellipsis(self) -> None:
        self._stop_ellipsis()
        self.show_ellipsis = True
        loop = asyncio.get_running_loop()
        self._ellipsis_timer = loop.call_later(self.ellipsis_seconds, self._expire_ellipsis)

    def _expire_ellipsis(self) -> None:
        self.show_ellipsis = False
        self._ellipsis_timer = None

    def _stop_ellipsis(self) -> None:
        if self._ellipsis_timer is not None:
            self._ellipsis_timer.cancel()
            self._ellipsis_timer = None
        self.show_ellipsis = False


class ChatStreamClient:
    """Issues chat requests and applies the streamed events to a session."""

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 180.0,
    ) -> None:
        self._base_url = base_url or api_base_url()
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            transport=self._transport,
            timeout=self._timeout,
        )

    async def fetch_messages(self, thread_id: str) -> list[NormalizedMessage]:
        """Fetch the authoritative message list for a thread."""
        async with self._client() as client:
            return await self._fetch_messages(client, thread_id)

    async def _fetch_messages(
        self, client: httpx.AsyncClient, thread_id: str
    ) -> list[NormalizedMessage]:
        response = await client.get(f"/threads/{thread_id}/messages")
        response.raise_for_status()
        return MessageListResponse.model_validate(response.json()).messages

    @staticmethod
    def _payload(session: ChatSession, text: str, files: list[OutgoingFile]) -> dict[str, Any]:
        thread_id = session.thread_id if is_valid_thread_id(session.thread_id) else None
        if files:
            data = {"message": text}
            if thread_id:
                data["threadId"] = thread_id
            return {
                "data": data,
                "files": [
                    ("files", (f.name, f.content, f.content_type or "application/octet-stream"))
                    for f in files
                ],
            }
        payload = {"message": text}
        if thread_id:
            payload["threadId"] = thread_id
        return {"json": payload}

    async def send(
        self,
        session: ChatSession,
        text: str,
        files: list[OutgoingFile] | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        """Send one chat turn and apply its events as they arrive.

        Args:
            session: Conversation state to update.
            text: User text (may be empty when files are attached).
            files: Attachments selected in the composer.
            on_change: Called after every visible state change (every chunk).
        """
        files = files or []
        notify = on_change or (lambda: None)
        if (not text.strip() and not files) or session.is_loading:
            return

        session.begin_turn()
        notify()

        try:
            async with (
                self._client() as client,
                client.stream(
                    "POST",
                    "/chat/stream",
                    headers={"Accept": "text/event-stream"},
                    **self._payload(session, text, files),
                ) as response,
            ):
                response.raise_for_status()
                session.start_stream()
                notify()
                parser = SSEParser()
                async for data in response.aiter_bytes():
                    for message in parser.feed(data):
                        await self._apply(client, session, message, notify)
        except httpx.HTTPStatusError as e:
            session.fail(f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            session.fail(f"Network error: {e}")

        if session.is_loading:
            session.fail("Stream closed before the assistant finished.")
        notify()

    async def _apply(
        self,
        client: httpx.AsyncClient,
        session: ChatSession,
        message: SSEMessage,
        notify: Callable[[], None],
    ) -> None:
        match message.event:
            case SSEEventType.CHUNK.value:
                text = message.data.get("text") or ""
                if text:
                    session.append_chunk(text)
                    notify()
            case SSEEventType.DONE.value:
                session.finish_stream()
                thread_id = message.data.get("thread_id")
                if not thread_id:
                    logger.warning("Stream finished without a thread id")
                    session.keep_streamed("missing thread id")
                else:
                    session.adopt_thread(thread_id)
                    try:
                        session.replace_messages(await self._fetch_messages(client, thread_id))
                    except (httpx.HTTPError, ValueError) as e:
                        logger.warning(f"Could not refresh thread {thread_id}: {e}")
                        session.keep_streamed(str(e))
                notify()
            case SSEEventType.ERROR.value:
                session.fail(message.data.get("error") or "Unknown error")
                notify()
            case _:
                logger.debug(f"Ignoring SSE event {message.event}")

"""Unit tests for ChatRelay.

Drives the relay against the in-memory upstream fake and checks the SSE
frames it produces, in particular that every stream ends with exactly one
terminal event.
"""

import logging
from pathlib import Path

import pytest

from src.assistant.client import AssistantServiceError
from src.assistant.config import RelayConfig
from src.assistant.events import (
    MessageCompleted,
    RequiresAction,
    RunCompleted,
    RunStarted,
    StreamError,
    TextDelta,
)
from src.assistant.relay import (
    DEFAULT_FILE_PROMPT,
    EMPTY_REQUEST_ERROR,
    INVALID_ASSISTANT_ERROR,
    NO_OUTPUT_ERROR,
    REQUIRES_ACTION_ERROR,
    TIMEOUT_ERROR,
    ChatRelay,
    EventSink,
    RelayRequest,
    format_sse,
)
from src.assistant.uploads import LocalUpload
from src.models.schemas import (
    THREAD_ID_PATTERN,
    ChunkData,
    NormalizedMessage,
    SSEEventType,
    TextPart,
)
from src.ui.stream import SSEMessage
from tests.fakes import NEW_THREAD_ID, FakeAssistantClient, parse_sse


async def run_relay(
    client: FakeAssistantClient,
    config: RelayConfig,
    request: RelayRequest,
) -> list[SSEMessage]:
    frames = [frame async for frame in ChatRelay(client, config).stream(request)]
    return parse_sse("".join(frames))


def terminal(events: list[SSEMessage]) -> list[SSEMessage]:
    return [e for e in events if e.event in ("done", "error")]


def chunks(events: list[SSEMessage]) -> list[str]:
    return [e.data["text"] for e in events if e.event == "chunk"]


def assistant_message(message_id: str, text: str) -> NormalizedMessage:
    return NormalizedMessage(id=message_id, role="assistant", parts=[TextPart(text=text)])


@pytest.fixture
def spooled(upload_dir: Path) -> LocalUpload:
    """A temporary image copy as produced by the chat endpoint."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / "upload-abc"
    path.write_bytes(b"\x89PNG fake image")
    return LocalUpload(path=path, filename="river.png", content_type="image/png")


HAPPY_EVENTS = [
    RunStarted(run_id="run_1"),
    TextDelta(text="## Water ", message_id="msg_a"),
    TextDelta(text="quality", message_id="msg_a"),
    MessageCompleted(message_id="msg_a", texts=["## Water quality"]),
    RunCompleted(status="completed", run_id="run_1"),
]


class TestFormatSse:
    """Tests for frame rendering."""

    def test_frame_layout(self) -> None:
        frame = format_sse(SSEEventType.CHUNK, ChunkData(text="hi"))

        assert frame == 'event: chunk\ndata: {"text":"hi"}\n\n'


class TestEventSink:
    """Tests for the terminal latch."""

    async def test_only_first_terminal_event_survives(self) -> None:
        sink = EventSink()
        sink.chunk("a")
        sink.done("thread_1")
        sink.error("late")
        sink.chunk("late")

        frames = [f async for f in sink.frames()]

        events = parse_sse("".join(frames))
        assert [e.event for e in events] == ["chunk", "done"]
        assert sink.terminated

    async def test_empty_chunks_dropped(self) -> None:
        sink = EventSink()
        sink.chunk("")
        sink.close()

        assert [f async for f in sink.frames()] == []
        assert not sink.sent_text


class TestValidation:
    """Tests for checks that run before anything is sent upstream."""

    async def test_empty_request(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        events = await run_relay(fake_client, relay_config, RelayRequest(message="   "))

        assert events == [SSEMessage(event="error", data={"error": EMPTY_REQUEST_ERROR})]
        assert fake_client.threads_created == 0

    async def test_missing_settings(self, fake_client: FakeAssistantClient) -> None:
        config = RelayConfig(openai_api_key="", assistant_id="")

        events = await run_relay(fake_client, config, RelayRequest(message="hi"))

        assert len(events) == 1
        assert events[0].data["error"] == "Server not configured with OPENAI_API_KEY, ASSISTANT_ID"

    async def test_invalid_assistant_stops_before_thread(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        """An unusable assistant id fails without creating a thread."""
        fake_client.assistant_error = AssistantServiceError("Assistant lookup failed", 404)

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert events == [SSEMessage(event="error", data={"error": INVALID_ASSISTANT_ERROR})]
        assert fake_client.threads_created == 0
        assert fake_client.posted == []

    async def test_spooled_files_removed_on_early_error(
        self, fake_client: FakeAssistantClient, spooled: LocalUpload
    ) -> None:
        config = RelayConfig(openai_api_key="", assistant_id="")

        await run_relay(fake_client, config, RelayRequest(uploads=[spooled]))

        assert not spooled.path.exists()


class TestStreaming:
    """Tests for the normal streaming path."""

    async def test_chunks_then_done(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = HAPPY_EVENTS

        events = await run_relay(
            fake_client, relay_config, RelayRequest(message="Assess my river")
        )

        assert chunks(events) == ["## Water ", "quality"]
        assert terminal(events) == [events[-1]]
        assert events[-1].event == "done"
        assert events[-1].data == {"thread_id": NEW_THREAD_ID, "message_id": "msg_a"}
        assert THREAD_ID_PATTERN.match(events[-1].data["thread_id"])
        assert fake_client.posted[0]["text"] == "Assess my river"
        assert fake_client.runs == [(NEW_THREAD_ID, "asst_test123")]

    async def test_existing_thread_reused(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = HAPPY_EVENTS

        events = await run_relay(
            fake_client, relay_config, RelayRequest(message="More", thread_id="thread_old1")
        )

        assert fake_client.threads_created == 0
        assert fake_client.posted[0]["thread_id"] == "thread_old1"
        assert events[-1].data["thread_id"] == "thread_old1"

    async def test_completed_message_sends_unstreamed_remainder(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [
            TextDelta(text="Hello", message_id="msg_a"),
            MessageCompleted(message_id="msg_a", texts=["Hello world"]),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert chunks(events) == ["Hello", " world"]
        assert events[-1].event == "done"

    async def test_completed_message_without_deltas(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [MessageCompleted(message_id="msg_a", texts=["Full answer"])]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert chunks(events) == ["Full answer"]
        assert [e.event for e in events] == ["chunk", "done"]

    async def test_diverged_completion_not_duplicated(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [
            TextDelta(text="Helo", message_id="msg_a"),
            MessageCompleted(message_id="msg_a", texts=["Hello"]),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert chunks(events) == ["Helo"]
        assert events[-1].event == "done"

    async def test_user_message_completion_ignored(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [
            MessageCompleted(message_id="msg_u", role="user", texts=["question"]),
            TextDelta(text="answer", message_id="msg_a"),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert chunks(events) == ["answer"]
        assert events[-1].data["message_id"] == "msg_a"

    async def test_events_after_terminal_dropped(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [
            MessageCompleted(message_id="msg_a", texts=["Done"]),
            TextDelta(text="extra", message_id="msg_a"),
            RunCompleted(status="failed", reason="late"),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "done"]

    async def test_debug_events_forwarded(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = HAPPY_EVENTS
        config = relay_config.model_copy(update={"debug_sse": True})

        events = await run_relay(fake_client, config, RelayRequest(message="hi"))

        debug = [e for e in events if e.event == "debug"]
        assert [d.data["event"] for d in debug] == [
            "RunStarted",
            "TextDelta",
            "TextDelta",
            "MessageCompleted",
        ]
        assert debug[0].data["data"] == {"run_id": "run_1"}
        assert events[-1].event == "done"


class TestRunFailures:
    """Tests for upstream failures during the run."""

    async def test_failed_run(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [
            RunStarted(run_id="run_1"),
            RunCompleted(status="failed", reason="Rate limit reached", run_id="run_1"),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert len(terminal(events)) == 1
        assert events[-1].event == "error"
        assert "failed" in events[-1].data["error"]
        assert "Rate limit reached" in events[-1].data["error"]

    async def test_requires_action(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [RequiresAction(run_id="run_1")]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert events == [SSEMessage(event="error", data={"error": REQUIRES_ACTION_ERROR})]

    async def test_stream_error(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [TextDelta(text="par", message_id="m"), StreamError(message="boom")]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "error"]
        assert events[-1].data["error"] == "boom"

    async def test_unexpected_exception_becomes_error(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.post_error = RuntimeError("database on fire")

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert events == [SSEMessage(event="error", data={"error": "database on fire"})]

    async def test_timeout_emits_single_error_and_cancels(
        self,
        fake_client: FakeAssistantClient,
        relay_config: RelayConfig,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        fake_client.events = [RunStarted(run_id="run_9"), TextDelta(text="partial", message_id="m")]
        fake_client.hang = True
        config = relay_config.model_copy(update={"stream_timeout_ms": 50})

        with caplog.at_level(logging.WARNING):
            events = await run_relay(fake_client, config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "error"]
        assert events[-1].data["error"] == TIMEOUT_ERROR
        assert fake_client.cancelled == [(NEW_THREAD_ID, "run_9")]
        assert "exceeded 50 ms" in caplog.text

    async def test_completion_racing_the_deadline(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        """A run that finishes as the deadline passes still ends with only `done`."""
        fake_client.events = [
            RunStarted(run_id="run_7"),
            MessageCompleted(message_id="msg_a", texts=["Final"]),
        ]
        fake_client.close_delay = 1.0
        config = relay_config.model_copy(update={"stream_timeout_ms": 50})

        events = await run_relay(fake_client, config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "done"]
        assert events[-1].data == {"thread_id": NEW_THREAD_ID, "message_id": "msg_a"}
        assert fake_client.cancelled == [(NEW_THREAD_ID, "run_7")]


class TestFallback:
    """Tests for runs that finish without streaming text."""

    async def test_latest_assistant_text_forwarded(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [RunCompleted(status="completed")]
        fake_client.messages[NEW_THREAD_ID] = [
            NormalizedMessage(id="msg_u", role="user", parts=[TextPart(text="hi")]),
            assistant_message("msg_a", "Stored answer"),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "done"]
        assert chunks(events) == ["Stored answer"]
        assert fake_client.list_calls == [
            {"thread_id": NEW_THREAD_ID, "order": "desc", "limit": 5}
        ]

    async def test_no_assistant_message(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [RunCompleted(status="completed")]
        fake_client.messages[NEW_THREAD_ID] = [
            NormalizedMessage(id="msg_u", role="user", parts=[TextPart(text="hi")]),
        ]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert events == [SSEMessage(event="error", data={"error": NO_OUTPUT_ERROR})]

    async def test_failed_listing_still_done(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [RunCompleted(status="completed")]
        fake_client.list_error = AssistantServiceError("Listing messages failed", 500)

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["done"]

    async def test_streamed_text_skips_fallback(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig
    ) -> None:
        fake_client.events = [TextDelta(text="streamed", message_id="m"), RunCompleted()]

        events = await run_relay(fake_client, relay_config, RelayRequest(message="hi"))

        assert [e.event for e in events] == ["chunk", "done"]
        assert fake_client.list_calls == []


class TestUploads:
    """Tests for attachment handling."""

    async def test_file_only_request_uses_default_prompt(
        self,
        fake_client: FakeAssistantClient,
        relay_config: RelayConfig,
        spooled: LocalUpload,
    ) -> None:
        fake_client.events = HAPPY_EVENTS

        events = await run_relay(fake_client, relay_config, RelayRequest(uploads=[spooled]))

        assert events[-1].event == "done"
        posted = fake_client.posted[0]
        assert posted["text"] == DEFAULT_FILE_PROMPT
        assert [f.file_id for f in posted["files"]] == ["file-1"]
        assert posted["files"][0].is_image
        upload = fake_client.uploads[0]
        assert upload["filename"] == "river.png"
        assert upload["purpose"] == "vision"
        assert upload["content"] == b"\x89PNG fake image"
        assert not spooled.path.exists()

    async def test_document_uploaded_for_assistants(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig, upload_dir: Path
    ) -> None:
        upload_dir.mkdir(parents=True)
        path = upload_dir / "upload-csv"
        path.write_text("site,ph\nA,7.1\n")
        upload = LocalUpload(path=path, filename="samples.csv", content_type="text/csv")
        fake_client.events = HAPPY_EVENTS

        await run_relay(
            fake_client, relay_config, RelayRequest(message="Check pH", uploads=[upload])
        )

        assert fake_client.uploads[0]["purpose"] == "assistants"
        assert fake_client.posted[0]["text"] == "Check pH"

    async def test_upload_failure(
        self,
        fake_client: FakeAssistantClient,
        relay_config: RelayConfig,
        spooled: LocalUpload,
    ) -> None:
        fake_client.upload_error = AssistantServiceError("Upload of river.png failed: too big", 413)

        events = await run_relay(fake_client, relay_config, RelayRequest(uploads=[spooled]))

        assert events == [
            SSEMessage(event="error", data={"error": "Upload of river.png failed: too big"})
        ]
        assert fake_client.posted == []
        assert not spooled.path.exists()

    async def test_failed_upload_cancels_the_others(
        self, fake_client: FakeAssistantClient, relay_config: RelayConfig, upload_dir: Path
    ) -> None:
        """One failed upload stops the rest before their temp files are removed."""
        upload_dir.mkdir(parents=True)
        uploads = []
        for name, content_type in (("bad.csv", "text/csv"), ("slow.png", "image/png")):
            path = upload_dir / f"upload-{name}"
            path.write_bytes(b"data")
            uploads.append(LocalUpload(path=path, filename=name, content_type=content_type))
        fake_client.upload_errors["bad.csv"] = AssistantServiceError("Upload of bad.csv failed", 400)
        fake_client.upload_delays["slow.png"] = 5.0

        events = await run_relay(fake_client, relay_config, RelayRequest(uploads=uploads))

        assert events == [SSEMessage(event="error", data={"error": "Upload of bad.csv failed"})]
        assert fake_client.cancelled_uploads == ["slow.png"]
        assert fake_client.uploads == []
        assert fake_client.posted == []
        assert list(upload_dir.iterdir()) == []

"""Unit tests for the incremental SSE parser."""

from src.ui.stream import SSEMessage, SSEParser, parse_block


class TestParseBlock:
    """Tests for single event blocks."""

    def test_json_event(self) -> None:
        block = 'event: chunk\ndata: {"text":"hi"}'

        assert parse_block(block) == SSEMessage(event="chunk", data={"text": "hi"})

    def test_missing_data_line(self) -> None:
        assert parse_block("event: chunk") is None

    def test_missing_event_line(self) -> None:
        assert parse_block('data: {"text":"hi"}') is None

    def test_bad_json_becomes_empty_payload(self) -> None:
        assert parse_block("event: done\ndata: {not json") == SSEMessage(event="done", data={})

    def test_non_object_json_becomes_empty_payload(self) -> None:
        assert parse_block('event: chunk\ndata: ["a"]').data == {}

    def test_unknown_event_keeps_raw_data(self) -> None:
        message = parse_block("event: ping\ndata: keepalive")

        assert message == SSEMessage(event="ping", data={"raw": "keepalive"})


class TestSSEParser:
    """Tests for incremental feeding."""

    def test_partial_block_buffered(self) -> None:
        parser = SSEParser()

        assert parser.feed(b'event: chunk\ndata: {"te') == []
        assert parser.pending == 'event: chunk\ndata: {"te'

        messages = parser.feed(b'xt":"Hello"}\n\nevent: chunk\n')

        assert messages == [SSEMessage(event="chunk", data={"text": "Hello"})]
        assert parser.pending == "event: chunk\n"

    def test_multiple_blocks_in_one_read(self) -> None:
        body = (
            b'event: chunk\ndata: {"text":"a"}\n\n'
            b'event: chunk\ndata: {"text":"b"}\n\n'
            b'event: done\ndata: {"thread_id":"thread_1"}\n\n'
        )

        messages = SSEParser().feed(body)

        assert [m.event for m in messages] == ["chunk", "chunk", "done"]
        assert messages[-1].data == {"thread_id": "thread_1"}

    def test_utf8_split_across_reads(self) -> None:
        """A multi-byte character split between reads is decoded intact."""
        frame = 'event: chunk\ndata: {"text":"Üferzone 🌿"}\n\n'.encode()
        cut = frame.index("🌿".encode()) + 2
        parser = SSEParser()

        first = parser.feed(frame[:cut])
        second = parser.feed(frame[cut:])

        assert first == []
        assert second == [SSEMessage(event="chunk", data={"text": "Üferzone 🌿"})]

    def test_crlf_line_endings(self) -> None:
        messages = SSEParser().feed(b'event: chunk\r\ndata: {"text":"x"}\r\n\r\n')

        assert messages == [SSEMessage(event="chunk", data={"text": "x"})]

    def test_malformed_block_skipped(self) -> None:
        messages = SSEParser().feed(b': comment\n\nevent: chunk\ndata: {"text":"ok"}\n\n')

        assert messages == [SSEMessage(event="chunk", data={"text": "ok"})]

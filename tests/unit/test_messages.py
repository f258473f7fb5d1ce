"""Unit tests for thread message normalization."""

from types import SimpleNamespace

from src.assistant.messages import normalize_message, normalize_parts
from src.models.schemas import FilePart, ImagePart, TextPart, UnknownPart


def text_block(value: str, annotations: list | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        type="text", text=SimpleNamespace(value=value, annotations=annotations or [])
    )


def file_annotation(file_id: str, text: str) -> SimpleNamespace:
    return SimpleNamespace(
        type="file_path", text=text, file_path=SimpleNamespace(file_id=file_id)
    )


class TestNormalizeParts:
    """Tests for content block mapping."""

    def test_preserves_order(self) -> None:
        content = [
            text_block("Look at this"),
            SimpleNamespace(type="image_file", image_file=SimpleNamespace(file_id="file-img")),
        ]

        parts = normalize_parts(content)

        assert parts == [TextPart(text="Look at this"), ImagePart(file_id="file-img")]

    def test_file_path_block(self) -> None:
        block = SimpleNamespace(
            type="file_path",
            file_path=SimpleNamespace(file_id="file-1", filename="chart.png"),
        )

        assert normalize_parts([block]) == [FilePart(file_id="file-1", filename="chart.png")]

    def test_file_path_block_without_name(self) -> None:
        block = SimpleNamespace(type="file_path", file_path=SimpleNamespace(file_id="file-1"))

        assert normalize_parts([block])[0].filename == "download"

    def test_annotated_files_follow_text(self) -> None:
        """Tool-generated files referenced in text become file parts."""
        annotations = [
            file_annotation("file-a", "sandbox:/mnt/data/results.csv"),
            file_annotation("file-a", "sandbox:/mnt/data/results.csv"),
            SimpleNamespace(type="file_citation", text="[1]"),
        ]

        parts = normalize_parts([text_block("See results", annotations)])

        assert parts == [
            TextPart(text="See results"),
            FilePart(file_id="file-a", filename="results.csv"),
        ]

    def test_unknown_block_passed_through(self) -> None:
        block = {"type": "refusal", "refusal": "no"}

        parts = normalize_parts([SimpleNamespace(type="refusal", refusal="no")])

        assert parts == [UnknownPart(type="refusal", raw=block)]

    def test_empty_content(self) -> None:
        assert normalize_parts(None) == []


class TestNormalizeMessage:
    """Tests for whole-message normalization."""

    def test_message_fields(self) -> None:
        message = SimpleNamespace(
            id="msg_1", role="assistant", created_at=1700000000, content=[text_block("hi")]
        )

        normalized = normalize_message(message)

        assert normalized.id == "msg_1"
        assert normalized.role == "assistant"
        assert normalized.created_at == 1700000000
        assert normalized.text_parts() == ["hi"]

    def test_missing_timestamp_defaults_to_now(self) -> None:
        message = SimpleNamespace(id="msg_1", role="user", created_at=None, content=[])

        assert normalize_message(message).created_at > 0

    def test_attachment_parts(self) -> None:
        message = SimpleNamespace(
            id="msg_1",
            role="user",
            created_at=1,
            content=[
                text_block("photo"),
                SimpleNamespace(type="image_file", image_file=SimpleNamespace(file_id="f1")),
            ],
        )

        assert normalize_message(message).attachment_parts() == [ImagePart(file_id="f1")]

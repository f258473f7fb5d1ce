"""Normalization of thread messages into role + tagged content parts."""

from pathlib import PurePosixPath
from typing import Any

from src.models.schemas import (
    ContentPart,
    FilePart,
    ImagePart,
    NormalizedMessage,
    TextPart,
    UnknownPart,
)


def _raw(block: Any) -> dict[str, Any]:
    if hasattr(block, "model_dump"):
        return block.model_dump(mode="json")
    if isinstance(block, dict):
        return block
    return {k: v for k, v in vars(block).items() if not k.startswith("_")}


def _annotated_files(text: Any, seen: set[str]) -> list[FilePart]:
    """File parts for `file_path` annotations (files generated by tools)."""
    files = []
    for annotation in getattr(text, "annotations", None) or []:
        if getattr(annotation, "type", None) != "file_path":
            continue
        file_id = getattr(getattr(annotation, "file_path", None), "file_id", None)
        if not file_id or file_id in seen:
            continue
        seen.add(file_id)
        name = PurePosixPath(getattr(annotation, "text", "") or "").name
        files.append(FilePart(file_id=file_id, filename=name or "download"))
    return files


def normalize_parts(content: list[Any] | None) -> list[ContentPart]:
    """Map upstream content blocks to tagged parts, preserving order."""
    parts: list[ContentPart] = []
    seen_files: set[str] = set()
    for block in content or []:
        kind = getattr(block, "type", None)
        if kind == "text":
            text = getattr(block, "text", None)
            parts.append(TextPart(text=getattr(text, "value", None) or ""))
            parts.extend(_annotated_files(text, seen_files))
        elif kind == "image_file":
            image = getattr(block, "image_file", None)
            parts.append(ImagePart(file_id=getattr(image, "file_id", None)))
        elif kind == "file_path":
            file_path = getattr(block, "file_path", None)
            parts.append(
                FilePart(
                    file_id=getattr(file_path, "file_id", None),
                    filename=getattr(file_path, "filename", None) or "download",
                )
            )
        else:
            parts.append(UnknownPart(type=str(kind), raw=_raw(block)))
    return parts


def normalize_message(message: Any) -> NormalizedMessage:
    """Reshape an upstream thread message for the UI.

    Args:
        message: Message object as returned by the Assistants API.

    Returns:
        NormalizedMessage with parts in upstream order.
    """
    fields: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "parts": normalize_parts(getattr(message, "content", None)),
    }
    created_at = getattr(message, "created_at", None)
    if created_at:
        fields["created_at"] = int(created_at)
    return NormalizedMessage(**fields)

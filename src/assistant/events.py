"""Normalization of Assistants API stream events.

The upstream SDKs have shipped several names for the same lifecycle moment
(``thread.message.delta`` vs ``textDelta`` vs ``text.delta``). Everything the
relay reacts to is mapped onto one small tagged vocabulary here, so the relay
itself only ever matches on these classes.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RUN_SUCCESS_STATUS = "completed"
DEFAULT_RUN_FAILURE_REASON = "Run did not complete"


class RelayEvent(BaseModel):
    """Base class for normalized stream events."""

    model_config = ConfigDict(frozen=True)


class RunStarted(RelayEvent):
    run_id: str | None = None


class TextDelta(RelayEvent):
    text: str
    message_id: str | None = None


class MessageCompleted(RelayEvent):
    message_id: str | None = None
    role: str = "assistant"
    texts: list[str] = Field(default_factory=list)


class RunCompleted(RelayEvent):
    """The run reached a terminal status, successful or not."""

    status: str = RUN_SUCCESS_STATUS
    reason: str | None = None
    run_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RUN_SUCCESS_STATUS


class RequiresAction(RelayEvent):
    run_id: str | None = None


class StreamError(RelayEvent):
    message: str


class Unknown(RelayEvent):
    name: str


_RUN_STARTED = {"thread.run.created", "runCreated", "run.created"}
_TEXT_DELTA = {"thread.message.delta", "textDelta", "text.delta"}
_MESSAGE_COMPLETED = {"thread.message.completed", "messageCompleted", "message.completed"}
_RUN_TERMINAL = {
    "thread.run.completed": "completed",
    "thread.run.failed": "failed",
    "thread.run.cancelled": "cancelled",
    "thread.run.expired": "expired",
    "thread.run.incomplete": "incomplete",
    "runCompleted": "completed",
    "run.completed": "completed",
}
_REQUIRES_ACTION = {
    "thread.run.requires_action",
    "runRequiresAction",
    "run.requires_action",
}
_ERROR = {"error"}


def _delta_text(data: Any) -> str:
    delta = getattr(data, "delta", None)
    if delta is None:
        # Legacy helpers hand over the text delta itself
        return getattr(data, "value", None) or ""
    pieces = []
    for block in getattr(delta, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        value = getattr(getattr(block, "text", None), "value", None)
        if value:
            pieces.append(value)
    return "".join(pieces)


def _message_texts(message: Any) -> list[str]:
    texts = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) != "text":
            continue
        value = getattr(getattr(block, "text", None), "value", None)
        if value:
            texts.append(value)
    return texts


def run_failure_reason(run: Any) -> str:
    """Best available explanation for a run that did not complete."""
    last_error = getattr(run, "last_error", None)
    if last_error is not None and getattr(last_error, "message", None):
        return last_error.message
    details = getattr(run, "incomplete_details", None)
    if details is not None and getattr(details, "reason", None):
        return details.reason
    return DEFAULT_RUN_FAILURE_REASON


def _error_message(data: Any) -> str:
    if isinstance(data, str):
        return data
    message = getattr(data, "message", None)
    if message:
        return str(message)
    return str(data) if data is not None else "Unknown stream error"


def normalize_event(name: str, data: Any) -> RelayEvent:
    """Map one upstream stream event onto the relay's vocabulary.

    Args:
        name: Upstream event name (current or legacy spelling).
        data: Event payload object as delivered by the SDK.

    Returns:
        The matching RelayEvent variant; Unknown for anything unrecognised.
    """
    if name in _TEXT_DELTA:
        message_id = getattr(data, "id", None) if hasattr(data, "delta") else None
        return TextDelta(text=_delta_text(data), message_id=message_id)

    if name in _MESSAGE_COMPLETED:
        return MessageCompleted(
            message_id=getattr(data, "id", None),
            role=getattr(data, "role", None) or "assistant",
            texts=_message_texts(data),
        )

    if name in _RUN_TERMINAL:
        status = getattr(data, "status", None) or _RUN_TERMINAL[name]
        reason = None if status == RUN_SUCCESS_STATUS else run_failure_reason(data)
        return RunCompleted(status=status, reason=reason, run_id=getattr(data, "id", None))

    if name in _REQUIRES_ACTION:
        return RequiresAction(run_id=getattr(data, "id", None))

    if name in _RUN_STARTED:
        return RunStarted(run_id=getattr(data, "id", None))

    if name in _ERROR:
        return StreamError(message=_error_message(data))

    return Unknown(name=name)

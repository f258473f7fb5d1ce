"""OpenAI Assistants API client wrapper.

Single boundary between the relay and the OpenAI SDK.

Design notes:

1. **Service Wrapper** - Decouples the relay from the SDK's interface. The
   Assistants endpoints live under ``client.beta`` and have been renamed
   before; only this module needs to follow such changes.

2. **Typed Failures** - Every ``openai.APIError`` is re-raised as
   ``AssistantServiceError`` carrying the upstream status code, so callers
   branch on one exception type and routers can map 404 vs 5xx.

3. **Normalized Output** - ``stream_run`` yields relay events and
   ``list_messages`` yields normalized messages, so no SDK object leaks past
   this module.

4. **Singleton Pattern** - One ``AsyncOpenAI`` instance (and its connection
   pool) is shared by all requests.
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel

from src.assistant.config import RelayConfig, get_relay_config
from src.assistant.events import RelayEvent, normalize_event
from src.assistant.messages import normalize_message
from src.models.schemas import NormalizedMessage

logger = logging.getLogger(__name__)

# Mime types that should use code_interpreter instead of file_search
CODE_INTERPRETER_MIME_TYPES = {
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/x-excel",
    "application/x-msexcel",
    "text/tab-separated-values",
}


def get_suggested_tool(mime_type: str | None) -> str:
    """Determine the retrieval tool for an attachment based on mime type."""
    if mime_type in CODE_INTERPRETER_MIME_TYPES:
        return "code_interpreter"
    return "file_search"


class AssistantServiceError(Exception):
    """Raised when a call to the Assistants API fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UploadedFile(BaseModel):
    """An attachment that now lives in the upstream file store."""

    file_id: str
    filename: str
    content_type: str | None = None

    @property
    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))


@asynccontextmanager
async def _upstream(action: str) -> AsyncIterator[None]:
    try:
        yield
    except openai.APIStatusError as e:
        raise AssistantServiceError(f"{action} failed: {e.message}", e.status_code) from e
    except openai.APIError as e:
        raise AssistantServiceError(f"{action} failed: {e.message}") from e


class AssistantClient:
    """Async facade over the Assistants API endpoints the relay needs."""

    def __init__(
        self,
        config: RelayConfig | None = None,
        openai_client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Optional relay configuration.
                    Loads from environment if not provided.
            openai_client: Pre-built SDK client (tests inject a mock).
        """
        self._config = config or get_relay_config()
        self._openai = openai_client or AsyncOpenAI(
            api_key=self._config.openai_api_key,
            base_url=self._config.base_url,
        )

    async def close(self) -> None:
        await self._openai.close()

    async def retrieve_assistant(self, assistant_id: str) -> None:
        """Check that the assistant exists and is reachable with our key."""
        async with _upstream("Assistant lookup"):
            await self._openai.beta.assistants.retrieve(assistant_id)

    async def create_thread(self) -> str:
        async with _upstream("Thread creation"):
            thread = await self._openai.beta.threads.create()
        logger.info(f"Created thread {thread.id}")
        return thread.id

    async def upload_file(self, path: Path, filename: str, purpose: str = "assistants") -> str:
        """Upload a local file under its original name.

        Args:
            path: Local file to send.
            filename: Name the upstream store should see.
            purpose: 'assistants' for retrieval, 'vision' for images.

        Returns:
            Upstream file id.
        """
        async with _upstream(f"Upload of {filename}"):
            with path.open("rb") as fh:
                uploaded = await self._openai.files.create(file=(filename, fh), purpose=purpose)
        logger.info(f"Uploaded {filename} as {uploaded.id}")
        return uploaded.id

    async def post_message(
        self,
        thread_id: str,
        text: str,
        files: list[UploadedFile] | None = None,
    ) -> str:
        """Post a user message, binding uploaded files to it.

        Images are attached as image content blocks so the assistant can see
        them; other files become attachments for the retrieval tools.

        Returns:
            Upstream message id.
        """
        files = files or []
        images = [f for f in files if f.is_image]
        documents = [f for f in files if not f.is_image]

        content: str | list[dict] = text
        if images:
            content = [{"type": "text", "text": text}]
            content.extend(
                {"type": "image_file", "image_file": {"file_id": f.file_id}} for f in images
            )

        kwargs: dict = {}
        if documents:
            kwargs["attachments"] = [
                {"file_id": f.file_id, "tools": [{"type": get_suggested_tool(f.content_type)}]}
                for f in documents
            ]

        async with _upstream("Posting message"):
            message = await self._openai.beta.threads.messages.create(
                thread_id=thread_id,
                role="user",
                content=content,
                **kwargs,
            )
        return message.id

    async def stream_run(self, thread_id: str, assistant_id: str) -> AsyncGenerator[RelayEvent]:
        """Start a run and yield its events in normalized form.

        Args:
            thread_id: Thread to run against.
            assistant_id: Assistant to run.

        Yields:
            RelayEvent variants in arrival order.
        """
        async with (
            _upstream("Run"),
            self._openai.beta.threads.runs.stream(
                thread_id=thread_id,
                assistant_id=assistant_id,
            ) as stream,
        ):
            async for event in stream:
                logger.debug(f"Upstream event {event.event}")
                yield normalize_event(event.event, event.data)

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        async with _upstream("Run cancellation"):
            await self._openai.beta.threads.runs.cancel(run_id=run_id, thread_id=thread_id)
        logger.info(f"Cancelled run {run_id} on thread {thread_id}")

    async def list_messages(
        self,
        thread_id: str,
        order: str = "asc",
        limit: int = 100,
    ) -> list[NormalizedMessage]:
        """Fetch one page of thread messages, normalized."""
        async with _upstream("Listing messages"):
            page = await self._openai.beta.threads.messages.list(
                thread_id=thread_id,
                order=order,
                limit=limit,
            )
        return [normalize_message(m) for m in page.data or []]

    async def retrieve_filename(self, file_id: str) -> str:
        """Original filename of a stored file (falls back to the id)."""
        async with _upstream("File lookup"):
            file = await self._openai.files.retrieve(file_id)
        return file.filename or file_id

    async def iter_file_content(self, file_id: str) -> AsyncGenerator[bytes]:
        """Stream a stored file's bytes."""
        async with (
            _upstream("File download"),
            self._openai.files.with_streaming_response.content(file_id) as response,
        ):
            async for chunk in response.iter_bytes():
                yield chunk


# Module-level singleton instance
_assistant_client: AssistantClient | None = None


def get_assistant_client() -> AssistantClient:
    """Get or create the global assistant client.

    Returns:
        The AssistantClient instance.
    """
    global _assistant_client
    if _assistant_client is None:
        _assistant_client = AssistantClient()
    return _assistant_client


async def close_assistant_client() -> None:
    """Release the global client's connection pool, if one was created."""
    global _assistant_client
    if _assistant_client is not None:
        await _assistant_client.close()
        _assistant_client = None

"""File proxy endpoint for images and attachments held upstream."""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from src.api.dependencies import upstream_http_exception
from src.assistant.client import AssistantClient, AssistantServiceError, get_assistant_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


def content_disposition(filename: str) -> str:
    """Build an attachment header that survives non-ASCII filenames."""
    ascii_name = filename.encode("ascii", "ignore").decode().replace('"', "").strip()
    value = f'attachment; filename="{ascii_name or "download"}"'
    if ascii_name != filename:
        value += f"; filename*=UTF-8''{quote(filename)}"
    return value


@router.get("/{file_id}")
async def download_file(
    file_id: str,
    client: AssistantClient = Depends(get_assistant_client),
) -> StreamingResponse:
    """Stream a stored file back with its original filename.

    Raises:
        404: File does not exist upstream.
        502: Any other upstream failure.
    """
    try:
        filename = await client.retrieve_filename(file_id)
    except AssistantServiceError as e:
        logger.warning(f"File lookup for {file_id} failed: {e}")
        raise upstream_http_exception(e) from e

    return StreamingResponse(
        client.iter_file_content(file_id),
        media_type="application/octet-stream",
        headers={"Content-Disposition": content_disposition(filename)},
    )

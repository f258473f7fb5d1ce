"""Thread message listing endpoint.

The authoritative source the UI reconciles against after a stream's `done`
event.
"""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import upstream_http_exception
from src.assistant.client import AssistantClient, AssistantServiceError, get_assistant_client
from src.models.schemas import MessageListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/threads", tags=["threads"])

MESSAGE_PAGE_SIZE = 100


@router.get("/{thread_id}/messages", response_model=MessageListResponse)
async def list_thread_messages(
    thread_id: str,
    client: AssistantClient = Depends(get_assistant_client),
) -> MessageListResponse:
    """Return a thread's messages, oldest first, as role + tagged parts.

    Raises:
        404: Thread does not exist upstream.
        502: Any other upstream failure.
    """
    try:
        messages = await client.list_messages(thread_id, order="asc", limit=MESSAGE_PAGE_SIZE)
    except AssistantServiceError as e:
        logger.warning(f"Listing messages for {thread_id} failed: {e}")
        raise upstream_http_exception(e) from e

    return MessageListResponse(messages=messages)

"""FastAPI dependencies shared by the routers.

Tests replace `get_relay_config` and `get_assistant_client` through
`app.dependency_overrides` to run the real routes against a fake upstream.
"""

from fastapi import Depends, HTTPException, status

from src.assistant.client import AssistantClient, AssistantServiceError, get_assistant_client
from src.assistant.config import RelayConfig, get_relay_config
from src.assistant.relay import ChatRelay


def get_chat_relay(
    client: AssistantClient = Depends(get_assistant_client),
    config: RelayConfig = Depends(get_relay_config),
) -> ChatRelay:
    """Build the relay for one request from the shared client and config."""
    return ChatRelay(client=client, config=config)


def upstream_http_exception(error: AssistantServiceError) -> HTTPException:
    """Map an upstream failure onto an HTTP error for non-streaming routes.

    Args:
        error: The failure raised by the assistant client.

    Returns:
        404 when the upstream object does not exist, 502 otherwise.
    """
    if error.status_code == status.HTTP_404_NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))

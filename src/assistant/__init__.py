"""Assistant relay: the bridge between HTTP requests and the hosted assistant.

Relays chat turns to the OpenAI Assistants API and turns its run stream into
a small set of server-sent events.

Responsibilities:
    - Relay configuration from the environment
    - Async client wrapper around the Assistants API
    - Normalization of upstream event names and message content
    - Streaming relay with timeout, fallback and one-shot termination
    - Temporary attachment spooling and cleanup

Maintains clean separation from the HTTP layer.
"""

from src.assistant.client import AssistantClient, AssistantServiceError, get_assistant_client
from src.assistant.config import RelayConfig, get_relay_config
from src.assistant.relay import ChatRelay, RelayRequest

__all__ = [
    "AssistantClient",
    "AssistantServiceError",
    "ChatRelay",
    "RelayConfig",
    "RelayRequest",
    "get_assistant_client",
    "get_relay_config",
]

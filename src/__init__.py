"""ecoSure - environmental advice reports from a hosted assistant.

Combines FastAPI for the SSE relay, the OpenAI Assistants API for answers,
NiceGUI for the report interface, and Pydantic for data validation.

Components:
    - api: HTTP endpoints and streaming responses
    - assistant: Upstream client, event normalization and the streaming relay
    - ui: SSE consumer, report building and the web interface
    - models: Request/response/event schemas
"""

__version__ = "0.1.0"

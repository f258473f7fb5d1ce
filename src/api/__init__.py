"""FastAPI endpoints for the ecoSure relay.

HTTP and streaming routes with async request handling.
Chat answers are streamed as Server-Sent Events.

Endpoints:
    - GET /health: Service health status
    - POST /chat/stream: Streaming chat turn (JSON or multipart with files)
    - GET /threads/{id}/messages: Normalized thread history
    - GET /files/{id}: Stored file download proxy
"""

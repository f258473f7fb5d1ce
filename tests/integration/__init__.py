"""Integration tests for components working together as a system.

Coverage:
    - API endpoints with real HTTP requests over ASGITransport
    - SSE framing, file proxy and thread listing
    - The UI stream consumer driven against the real API

Only the upstream Assistants API is replaced.
"""

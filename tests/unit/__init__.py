"""Unit tests for individual components in isolation.

Coverage:
    - assistant/: Config, event normalization, client wrapper and relay
    - models/: Message normalization
    - ui/: SSE parsing and report assembly

Uses mocks for the OpenAI SDK and the in-memory fake for the relay.
"""

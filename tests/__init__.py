"""Test package for the ecoSure relay.

Structure:
    - unit/: Individual function and class tests
    - integration/: API and stream consumer workflows

The upstream Assistants API is never called; tests run against the
in-memory fake in fakes.py.
"""

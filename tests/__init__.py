"""
Test Suite

Contains unit tests for the backend and the client resilience layer.

Structure:
- tests/unit/: Tests for individual components (adapters, aggregation, storage,
  services, HTTP/WebSocket surfaces, client tiers), all with mocked I/O

Uses pytest with pytest-asyncio for testing async functionality.
"""

"""Pytest configuration for integration tests.

This module provides integration-test-specific fixtures: a helper that
parses Server-Sent Events bodies and a fixture that creates a session
through the API.
"""

import json

import pytest
import pytest_asyncio


def _parse_sse(text: str) -> list[dict]:
    events = []
    # Normalize line endings and split by double newline
    normalized_text = text.replace("\r\n", "\n")
    for block in normalized_text.strip().split("\n\n"):
        event_type = None
        event_data = None
        for part in block.split("\n"):
            if part.startswith("event:"):
                event_type = part.split(":", 1)[1].strip()
            elif part.startswith("data:"):
                event_data = part.split(":", 1)[1].strip()
        if event_type and event_data:
            events.append({"event": event_type, "data": json.loads(event_data)})
    return events


@pytest.fixture
def parse_sse():
    """Return a function turning an SSE response body into event dicts."""
    return _parse_sse


@pytest_asyncio.fixture
async def session_id(async_client) -> str:
    """Create a session with the default model and return its id."""
    response = await async_client.post("/api/v1/sessions", json={})
    assert response.status_code == 201
    return response.json()["session_id"]


@pytest.fixture
def registry(test_app):
    """The session registry of the running test app."""
    return test_app.state.session_registry

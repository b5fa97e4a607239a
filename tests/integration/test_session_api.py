"""Integration tests for session API endpoints.

Tests the full session CRUD API with httpx AsyncClient against
the FastAPI application.
"""

import pytest


@pytest.mark.asyncio
async def test_create_session(async_client):
    """Test creating a new session."""
    response = await async_client.post("/api/v1/sessions", json={"model": "grok-3-mini"})

    assert response.status_code == 201
    data = response.json()
    assert len(data["session_id"]) == 10
    assert data["model"] == "grok-3-mini"
    assert data["message_count"] == 0
    assert data["sandbox_enabled"] is False
    assert data["converse_mode"] is False
    assert data["rate_limiter_enabled"] is True
    assert data["planning_enabled"] is False
    assert "created_at" in data


@pytest.mark.asyncio
async def test_create_session_uses_default_model(async_client, test_settings):
    response = await async_client.post("/api/v1/sessions", json={})

    assert response.json()["model"] == test_settings.default_model


@pytest.mark.asyncio
async def test_create_session_with_system_prompt_and_flags(async_client):
    response = await async_client.post(
        "/api/v1/sessions",
        json={
            "system_prompt": "You are terse.",
            "sandbox_enabled": True,
            "converse_mode": True,
            "rate_limiter_enabled": False,
        },
    )

    data = response.json()
    assert data["message_count"] == 1
    assert data["sandbox_enabled"] is True
    assert data["converse_mode"] is True
    assert data["rate_limiter_enabled"] is False


@pytest.mark.asyncio
async def test_create_session_empty_model(async_client):
    response = await async_client.post("/api/v1/sessions", json={"model": ""})

    assert response.status_code == 400
    assert response.json()["detail"]["error"]["code"] == "invalid_session"


@pytest.mark.asyncio
async def test_list_sessions(async_client):
    """Test listing sessions with previews."""
    empty = await async_client.get("/api/v1/sessions")
    assert empty.json() == {"sessions": []}

    await async_client.post("/api/v1/sessions", json={"model": "grok-3"})
    await async_client.post("/api/v1/sessions", json={"model": "grok-3-mini"})

    response = await async_client.get("/api/v1/sessions")

    assert response.status_code == 200
    sessions = response.json()["sessions"]
    assert len(sessions) == 2
    assert {s["model"] for s in sessions} == {"grok-3", "grok-3-mini"}
    assert all(s["preview"] == "" for s in sessions)


@pytest.mark.asyncio
async def test_get_session(async_client, session_id):
    response = await async_client.get(f"/api/v1/sessions/{session_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == session_id
    assert data["messages"] == []


@pytest.mark.asyncio
async def test_get_session_not_found(async_client):
    response = await async_client.get("/api/v1/sessions/nonexistent")

    assert response.status_code == 404
    error = response.json()["detail"]["error"]
    assert error["code"] == "session_not_found"
    assert error["details"] == {"session_id": "nonexistent"}


@pytest.mark.asyncio
async def test_get_session_corrupt_file(async_client, test_settings):
    sessions_dir = test_settings.resolved_sessions_dir
    sessions_dir.mkdir(parents=True, exist_ok=True)
    (sessions_dir / "broken.json").write_text('{"messages": []}', encoding="utf-8")

    response = await async_client.get("/api/v1/sessions/broken")

    assert response.status_code == 500
    assert response.json()["detail"]["error"]["code"] == "session_load_error"


@pytest.mark.asyncio
async def test_update_session(async_client, session_id):
    response = await async_client.patch(
        f"/api/v1/sessions/{session_id}",
        json={"model": "grok-code-fast-1", "sandbox_enabled": True},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["model"] == "grok-code-fast-1"
    assert data["sandbox_enabled"] is True
    assert data["converse_mode"] is False

    detail = await async_client.get(f"/api/v1/sessions/{session_id}")
    assert detail.json()["model"] == "grok-code-fast-1"


@pytest.mark.asyncio
async def test_update_session_empty_model(async_client, session_id):
    response = await async_client.patch(f"/api/v1/sessions/{session_id}", json={"model": " "})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_session_not_found(async_client):
    response = await async_client.patch("/api/v1/sessions/nonexistent", json={"model": "x"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_session(async_client, session_id):
    response = await async_client.delete(f"/api/v1/sessions/{session_id}")
    assert response.status_code == 204

    again = await async_client.get(f"/api/v1/sessions/{session_id}")
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_delete_session_not_found(async_client):
    response = await async_client.delete("/api/v1/sessions/nonexistent")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_messages(async_client, session_id, provider):
    provider.queue_text("Hello!", reasoning="be nice")
    await async_client.post(f"/api/v1/chat/{session_id}/stream", json={"message": "Hi"})

    response = await async_client.get(f"/api/v1/sessions/{session_id}/messages")

    assert response.status_code == 200
    messages = response.json()["messages"]
    assert [m["role"] for m in messages] == ["user", "thought", "assistant"]
    assert messages[2]["content"] == "Hello!"
    assert messages[2]["model"] == "grok-3"


@pytest.mark.asyncio
async def test_get_context(async_client, session_id, provider):
    provider.queue_text("Hello!", usage=(30, 5))
    await async_client.post(f"/api/v1/chat/{session_id}/stream", json={"message": "Hi"})

    response = await async_client.get(f"/api/v1/sessions/{session_id}/context")

    assert response.status_code == 200
    data = response.json()
    assert data["model"] == "grok-3"
    assert data["max_context"] == 131072
    assert data["api_message_count"] == 2
    assert data["estimated_tokens"] > 0
    assert data["last_prompt_tokens"] == 30
    assert data["rate_window"]["tokens_used"] == 35
    assert data["rate_window"]["requests_used"] == 1
    assert data["turn_active"] is False
    assert data["pending_request"] is None
    assert data["todos"] == []


@pytest.mark.asyncio
async def test_clear_session(async_client, provider):
    create = await async_client.post("/api/v1/sessions", json={"system_prompt": "sys"})
    session_id = create.json()["session_id"]
    provider.queue_text("Hello!")
    await async_client.post(f"/api/v1/chat/{session_id}/stream", json={"message": "Hi"})

    response = await async_client.post(f"/api/v1/sessions/{session_id}/clear")

    assert response.status_code == 200
    assert response.json()["message_count"] == 1
    messages = (await async_client.get(f"/api/v1/sessions/{session_id}/messages")).json()
    assert [m["role"] for m in messages["messages"]] == ["system"]


@pytest.mark.asyncio
async def test_toggle_planning_mode(async_client, session_id):
    enabled = await async_client.post(f"/api/v1/sessions/{session_id}/plan")
    assert enabled.json() == {"session_id": session_id, "planning_enabled": True}

    detail = await async_client.get(f"/api/v1/sessions/{session_id}")
    assert detail.json()["planning_enabled"] is True
    assert "INTERACTIVE PLANNING MODE" in detail.json()["messages"][-1]["content"]

    disabled = await async_client.post(f"/api/v1/sessions/{session_id}/plan")
    assert disabled.json()["planning_enabled"] is False

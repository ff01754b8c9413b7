"""Tests for the REST client against a mock transport."""

import json

import httpx
import pytest

from agentstream.adapters.api_client import ApiClient
from agentstream.errors import ApiError, GitInitRequiredError
from agentstream.schemas.session import SessionResumeMode, StartSessionRequest

from conftest import MockBackend


@pytest.mark.asyncio
async def test_start_session_sends_camel_case_body(api: ApiClient, backend: MockBackend):
    backend.on("POST", "/api/sessions", status=201, json={
        "session": {"id": "s2", "taskId": "t1", "status": "running", "resumeMode": "retry", "attemptNumber": 2},
        "wsUrl": "ws://backend.test/ws/session/s2",
    })

    resp = await api.start_session(StartSessionRequest(
        task_id="t1", mode=SessionResumeMode.RETRY, initial_prompt="continue",
    ))

    assert resp.session.id == "s2"
    assert resp.session.attempt_number == 2
    assert resp.ws_url == "ws://backend.test/ws/session/s2"
    [call] = backend.calls("POST", "/api/sessions")
    assert json.loads(call.content) == {"taskId": "t1", "mode": "retry", "initialPrompt": "continue"}


@pytest.mark.asyncio
async def test_task_messages_with_session_chain(api: ApiClient, backend: MockBackend):
    backend.on("GET", "/api/tasks/t1/messages", json={"messages": [
        {"id": "m1", "sessionId": "s2", "role": "assistant", "blocks": [{"type": "text", "text": "hi"}],
         "timestamp": "2026-01-01T00:00:00Z", "tokenCount": 3, "toolName": None, "toolInput": None, "toolResult": None},
    ]})

    messages = await api.get_task_messages("t1", session_ids=["s2", "s3"], limit=50)

    assert [m.id for m in messages] == ["m1"]
    [call] = backend.calls("GET", "/api/tasks/t1/messages")
    assert call.url.params["sessionIds"] == "s2,s3"
    assert call.url.params["limit"] == "50"


@pytest.mark.asyncio
async def test_list_sessions_drops_unset_params(api: ApiClient, backend: MockBackend):
    backend.on("GET", "/api/sessions", json={"sessions": [{"id": "s1", "taskId": "t1"}]})
    sessions = await api.list_sessions("t1")
    assert [s.id for s in sessions] == ["s1"]
    [call] = backend.calls("GET", "/api/sessions")
    assert dict(call.url.params) == {"taskId": "t1"}


@pytest.mark.asyncio
async def test_error_body_becomes_api_error(api: ApiClient, backend: MockBackend):
    backend.on("GET", "/api/sessions/s9/messages", status=404, json={"error": "Session not found"})
    with pytest.raises(ApiError) as exc_info:
        await api.get_session_messages("s9")
    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Session not found"


@pytest.mark.asyncio
async def test_git_init_warning_is_distinguished(api: ApiClient, backend: MockBackend):
    backend.on("POST", "/api/sessions", status=400, json={
        "error": "Working directory is not a git repository",
        "warnings": [{"code": "GIT_INIT_REQUIRED", "message": "Run git init"}],
    })
    with pytest.raises(GitInitRequiredError) as exc_info:
        await api.start_session(StartSessionRequest(task_id="t1"))
    assert exc_info.value.warnings[0]["message"] == "Run git init"


@pytest.mark.asyncio
async def test_non_json_error_body():
    transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
    async with ApiClient("http://backend.test", transport=transport) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.approve_request("rq-1")
    assert exc_info.value.status_code == 502
    assert exc_info.value.message == "Request failed"


@pytest.mark.asyncio
async def test_transport_failure_wrapped():
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with ApiClient("http://backend.test", transport=httpx.MockTransport(unreachable)) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.get_pending_approvals("s1")
    assert exc_info.value.status_code == 0
    assert "connection refused" in exc_info.value.message

"""Tests for the approval flow: intake, decision routing and deadlines."""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from agentstream.adapters.session_socket import SessionConnectionManager
from agentstream.errors import ApprovalDecisionError
from agentstream.schemas.approval import ApprovalRequest, ApprovalStatus
from agentstream.services.approval_service import ApprovalFlowManager

from conftest import FakeConnector, FakeWebSocket, MockBackend

SETTINGS = "agentstream.services.approval_service.settings"


def _request(request_id: str = "rq-1", *, seconds: float = 30, session_id: str = "s1") -> ApprovalRequest:
    return ApprovalRequest(
        id=request_id,
        session_id=session_id,
        tool_name="Bash",
        tool_input={"command": "make deploy"},
        timeout_at=datetime.now(UTC) + timedelta(seconds=seconds),
    )


def _wire_approval(request_id: str, timeout_at: datetime) -> dict:
    return {
        "type": "approval_required",
        "data": {
            "requestId": request_id,
            "toolName": "Bash",
            "toolInput": {"command": "make deploy"},
            "category": "dangerous",
            "timeoutAt": timeout_at.isoformat(),
        },
    }


async def _flow(connector: FakeConnector, api, *, connect: bool = True):
    manager = SessionConnectionManager(connect_factory=connector)
    flow = ApprovalFlowManager(manager, api, is_session_live=lambda: manager.session_state.is_live)
    manager.on_approval_required = flow.register
    if connect:
        await manager.connect("s1")
    return manager, flow


@pytest.mark.asyncio
async def test_decision_goes_over_socket_when_connected(connector: FakeConnector, fake_ws: FakeWebSocket, api, backend: MockBackend):
    manager, flow = await _flow(connector, api)
    manager.handle_raw(json.dumps(_wire_approval("rq-1", datetime.now(UTC) + timedelta(seconds=30))))
    assert [r.id for r in flow.pending] == ["rq-1"]

    decided = await flow.approve("rq-1")

    assert decided.status is ApprovalStatus.APPROVED
    assert decided.decided_by == "user"
    assert flow.pending == []
    assert fake_ws.sent == [{"type": "approval_response", "requestId": "rq-1", "approved": True}]
    assert backend.requests == []
    await manager.disconnect()


@pytest.mark.asyncio
async def test_decision_falls_back_to_rest_when_disconnected(connector: FakeConnector, api, backend: MockBackend):
    backend.on("POST", "/api/approvals/rq-1/reject", json={"success": True})
    manager, flow = await _flow(connector, api, connect=False)
    flow.register(_request())

    decided = await flow.reject("rq-1")

    assert decided.status is ApprovalStatus.REJECTED
    [call] = backend.calls("POST", "/api/approvals/rq-1/reject")
    assert json.loads(call.content) == {"decidedBy": "user"}


@pytest.mark.asyncio
async def test_decision_falls_back_to_rest_when_session_finished(connector: FakeConnector, fake_ws: FakeWebSocket, api, backend: MockBackend):
    backend.on("POST", "/api/approvals/rq-1/approve", json={"success": True})
    manager, flow = await _flow(connector, api)
    flow.register(_request())
    manager.handle_raw('{"type": "status", "status": "completed"}')

    await flow.approve("rq-1")

    assert fake_ws.sent == []
    assert len(backend.calls("POST", "/api/approvals/rq-1/approve")) == 1
    await manager.disconnect()


@pytest.mark.asyncio
async def test_fallback_failure_restores_pending(connector: FakeConnector, api, backend: MockBackend):
    backend.on("POST", "/api/approvals/rq-1/approve", status=500, json={"error": "database locked"})
    _, flow = await _flow(connector, api, connect=False)
    flow.register(_request())

    with pytest.raises(ApprovalDecisionError) as exc_info:
        await flow.approve("rq-1")

    assert exc_info.value.request_id == "rq-1"
    assert exc_info.value.cause.status_code == 500
    assert [r.status for r in flow.pending] == [ApprovalStatus.PENDING]


@pytest.mark.asyncio
async def test_replay_during_fallback_does_not_revive_request(connector: FakeConnector, api):
    _, flow = await _flow(connector, api, connect=False)
    flow.register(_request())
    gate = asyncio.Event()

    async def slow_approve(request_id: str) -> None:
        await gate.wait()

    with patch.object(api, "approve_request", side_effect=slow_approve):
        decision = asyncio.create_task(flow.approve("rq-1"))
        await asyncio.sleep(0)
        assert flow.register(_request()) is None
        gate.set()
        decided = await decision

    assert decided.status is ApprovalStatus.APPROVED
    assert flow.pending == []
    assert flow.get("rq-1").status is ApprovalStatus.APPROVED


@pytest.mark.asyncio
async def test_decided_request_never_returns_to_pending(connector: FakeConnector, fake_ws: FakeWebSocket, api):
    manager, flow = await _flow(connector, api)
    frame = json.dumps(_wire_approval("rq-1", datetime.now(UTC) + timedelta(seconds=30)))
    manager.handle_raw(frame)
    await flow.reject("rq-1")

    events = manager.subscribe_events("approval")
    manager.handle_raw(frame)

    assert flow.pending == []
    assert flow.get("rq-1").status is ApprovalStatus.REJECTED
    assert events.empty()
    await manager.disconnect()


@pytest.mark.asyncio
async def test_unknown_request_is_ignored(connector: FakeConnector, api, backend: MockBackend):
    _, flow = await _flow(connector, api, connect=False)
    assert await flow.approve("nope") is None
    assert backend.requests == []


def test_expire_overdue_applies_configured_action():
    flow = ApprovalFlowManager(SessionConnectionManager(), api=None)
    flow.register(_request("late", seconds=-1))
    flow.register(_request("early", seconds=60))

    with patch(f"{SETTINGS}.approval_timeout_action", "approve"):
        expired = flow.expire_overdue()

    assert [(r.id, r.status, r.decided_by) for r in expired] == [("late", ApprovalStatus.APPROVED, "timeout")]
    assert [r.id for r in flow.pending] == ["early"]


def test_expire_overdue_denies_by_default():
    flow = ApprovalFlowManager(SessionConnectionManager(), api=None)
    flow.register(_request(seconds=30))
    [expired] = flow.expire_overdue(datetime.now(UTC) + timedelta(minutes=1))
    assert expired.status is ApprovalStatus.REJECTED


@pytest.mark.asyncio
async def test_deadline_timer_fires_without_polling(connector: FakeConnector, api):
    _, flow = await _flow(connector, api, connect=False)
    flow.register(_request(seconds=0.05))
    await asyncio.sleep(0.2)
    assert flow.pending == []
    assert flow.get("rq-1").decided_by == "timeout"


@pytest.mark.asyncio
async def test_load_pending_from_rest(connector: FakeConnector, api, backend: MockBackend):
    backend.on("GET", "/api/approvals/session/s1/pending", json={"approvals": [{
        "id": "rq-7",
        "sessionId": "s1",
        "type": "tool",
        "payload": {"toolName": "Write", "toolInput": {"file_path": "x.py"}},
        "toolCategory": "requires-approval",
        "status": "pending",
        "timeoutAt": (datetime.now(UTC) + timedelta(minutes=5)).isoformat(),
        "decidedAt": None,
        "decidedBy": None,
        "createdAt": datetime.now(UTC).isoformat(),
    }]})
    _, flow = await _flow(connector, api, connect=False)

    loaded = await flow.load_pending("s1")

    assert [(r.id, r.tool_name, r.tool_input) for r in loaded] == [("rq-7", "Write", {"file_path": "x.py"})]
    flow.clear()

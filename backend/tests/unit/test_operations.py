"""Tests for the builder operations engine."""

import pytest

from flowdraft.builder.operations import BuilderOperations
from flowdraft.builder.session_store import InMemorySessionStore
from flowdraft.config.builder_config import BuilderConfig
from flowdraft.errors import (
    DuplicateNodeName,
    EmptyDraft,
    InvalidConnection,
    InvalidInput,
    InvalidOutputIndex,
    MissingTrigger,
    NodeNotFound,
    RemoteSubmissionFailed,
    SessionClosed,
    SessionNotFound,
    UnknownCredential,
    UnknownNodeType,
)
from flowdraft.n8n.base import RemoteErrorKind, WorkflowServiceError
from flowdraft.workflow.draft_model import SessionStatus, parse_iso


async def _gate_draft(ops: BuilderOperations) -> str:
    session_id = (await ops.start("Gate flow"))["session_id"]
    await ops.add_node(session_id, "manual", name="Start")
    await ops.add_node(session_id, "if", name="Gate")
    await ops.add_node(session_id, "set", name="Yes")
    await ops.add_node(session_id, "set", name="No")
    return session_id


# ── start / add_node ──


@pytest.mark.asyncio
async def test_start_returns_session(ops: BuilderOperations) -> None:
    result = await ops.start("Orders", description="Intake")
    assert result["session_id"].startswith("builder-")
    assert result["ttl_seconds"] == 1800
    session = await ops.store.get(result["session_id"])
    assert session.draft.description == "Intake"
    assert session.operations_log[0].operation == "session_started"


@pytest.mark.asyncio
async def test_start_requires_name(ops: BuilderOperations) -> None:
    with pytest.raises(InvalidInput):
        await ops.start("  ")


@pytest.mark.asyncio
async def test_add_node_stamps_metadata_and_layout(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    first = await ops.add_node(session_id, "Webhook", config={"path": "orders"})
    second = await ops.add_node(session_id, "switch", config={"rules": {"values": [{}, {}, {}]}})

    assert first["node_name"] == "Webhook"
    assert first["category"] == "trigger"
    assert first["hint"].startswith("First node added")
    assert second["expected_outputs"] == 3
    assert second["nodes_count"] == 2
    assert any("editor" in w for w in second["warnings"])

    session = await ops.store.get(session_id)
    webhook, switch = session.draft.nodes
    assert webhook.position == [100, 200]
    assert switch.position == [280, 200]
    assert webhook.resolved_type == "n8n-nodes-base.webhook"
    assert webhook.parameters == {"httpMethod": "POST", "path": "orders"}
    assert session.count_operations("add_node") == 2


@pytest.mark.asyncio
async def test_add_node_default_names_are_unique(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    names = [(await ops.add_node(session_id, "set"))["node_name"] for _ in range(3)]
    assert names == ["Set", "Set 2", "Set 3"]


@pytest.mark.asyncio
async def test_add_node_rejects_unknown_type(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    with pytest.raises(UnknownNodeType) as exc_info:
        await ops.add_node(session_id, "teleport")
    assert "webhook" in exc_info.value.details["supported_types"]


@pytest.mark.asyncio
async def test_add_node_rejects_duplicate_name(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    await ops.add_node(session_id, "set", name="Step")
    with pytest.raises(DuplicateNodeName):
        await ops.add_node(session_id, "code", name="Step")
    assert len((await ops.store.get(session_id)).draft.nodes) == 1


@pytest.mark.asyncio
async def test_add_node_rejects_unknown_credential(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x", credentials={"db": "7"}))["session_id"]
    await ops.add_node(session_id, "postgres", credential="db")
    with pytest.raises(UnknownCredential):
        await ops.add_node(session_id, "postgres", credential="other")


@pytest.mark.asyncio
async def test_operations_on_missing_session(ops: BuilderOperations) -> None:
    with pytest.raises(SessionNotFound) as exc_info:
        await ops.add_node("builder-nope", "set")
    assert "recovery_hint" in exc_info.value.details


@pytest.mark.asyncio
async def test_operations_on_expired_session(ops: BuilderOperations, clock) -> None:
    session_id = (await ops.start("x"))["session_id"]
    clock.advance(1800)
    with pytest.raises(SessionClosed) as exc_info:
        await ops.add_node(session_id, "set")
    assert "resume" in exc_info.value.details["recovery_hint"]


# ── connect ──


@pytest.mark.asyncio
async def test_connect_by_name_and_id(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    session = await ops.store.get(session_id)
    gate_id = session.draft.get_node("Gate").id

    result = await ops.connect(session_id, gate_id, "No", from_output=1)
    assert result == {"from": "Gate", "to": "No", "from_output": 1, "to_input": 0, "connections_count": 1}


@pytest.mark.asyncio
async def test_connect_out_of_range_output(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    await ops.connect(session_id, "Gate", "Yes", from_output=0)

    with pytest.raises(InvalidOutputIndex) as exc_info:
        await ops.connect(session_id, "Gate", "No", from_output=2)

    details = exc_info.value.details
    assert details["valid_range"] == "0 to 1"
    assert details["fix"]["suggested_value"] == 1
    assert details["requested_output"] == 2
    assert details["node_category"] == "branching"
    assert details["existing_connections"] == [
        {"to_node": "Yes", "from_output": 0, "valid": True, "status": "ok"},
    ]
    assert details["reference"]
    assert len((await ops.store.get(session_id)).draft.connections) == 1


@pytest.mark.asyncio
async def test_rejected_calls_still_extend_ttl(ops: BuilderOperations, clock) -> None:
    session_id = (await ops.start("x"))["session_id"]
    await ops.add_node(session_id, "manual", name="Start")
    await ops.add_node(session_id, "if", name="Gate")
    expires_at = parse_iso((await ops.store.get(session_id)).expires_at)

    clock.advance(600)
    with pytest.raises(InvalidOutputIndex):
        await ops.connect(session_id, "Gate", "Start", from_output=2)
    after_index = parse_iso((await ops.store.get(session_id)).expires_at)
    assert after_index > expires_at

    clock.advance(600)
    with pytest.raises(NodeNotFound):
        await ops.connect(session_id, "Ghost", "Start")
    session = await ops.store.get(session_id)
    assert parse_iso(session.expires_at) > after_index
    assert session.draft.connections == []

    # a full TTL since the last accepted write
    clock.advance(600)
    with pytest.raises(UnknownNodeType):
        await ops.add_node(session_id, "teleport")
    assert (await ops.store.get(session_id)).status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_connect_switch_explains_rules(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    await ops.add_node(session_id, "switch", name="Route", config={"rules": {"values": [{}, {}]}})
    await ops.add_node(session_id, "set", name="C")
    with pytest.raises(InvalidOutputIndex) as exc_info:
        await ops.connect(session_id, "Route", "C", from_output=2)
    assert exc_info.value.details["rules_count"] == 2


@pytest.mark.asyncio
async def test_connect_unknown_nodes(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    with pytest.raises(NodeNotFound) as exc_info:
        await ops.connect(session_id, "Ghost", "Yes")
    assert exc_info.value.details["available_nodes"] == ["Start", "Gate", "Yes", "No"]
    with pytest.raises(NodeNotFound):
        await ops.connect(session_id, "Start", "Ghost")


@pytest.mark.asyncio
async def test_connect_rejects_self_and_duplicates(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    with pytest.raises(InvalidConnection):
        await ops.connect(session_id, "Yes", "Yes")
    await ops.connect(session_id, "Start", "Gate")
    with pytest.raises(InvalidConnection):
        await ops.connect(session_id, "Start", "Gate")


@pytest.mark.asyncio
async def test_connect_rejects_negative_ports(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    with pytest.raises(InvalidInput):
        await ops.connect(session_id, "Start", "Gate", from_output=-1)


# ── commit ──


@pytest.mark.asyncio
async def test_commit_success_deletes_session(ops: BuilderOperations, service) -> None:
    session_id = await _gate_draft(ops)
    result = await ops.commit(session_id)

    assert result == {
        "workflow_id": "wf-1", "name": "Gate flow", "nodes_count": 4,
        "active": False, "session_closed": True,
    }
    payload = service.created[0]
    assert payload["connections"]["Gate"]["main"][1] == [{"node": "No", "type": "main", "index": 0}]
    assert await ops.store.get(session_id) is None


@pytest.mark.asyncio
async def test_commit_with_activation(ops: BuilderOperations, service) -> None:
    session_id = await _gate_draft(ops)
    result = await ops.commit(session_id, activate=True)
    assert result["active"] is True
    assert service.activated == ["wf-1"]


@pytest.mark.asyncio
async def test_commit_empty_draft_keeps_session(ops: BuilderOperations) -> None:
    session_id = (await ops.start("empty"))["session_id"]
    with pytest.raises(EmptyDraft) as exc_info:
        await ops.commit(session_id)

    details = exc_info.value.details
    assert details["session_status"] == "active"
    assert details["ttl_extended"] is True
    assert details["retry_count"] == 0
    assert "Session kept alive" in details["recovery_hint"]

    listed = await ops.list_drafts()
    assert [d["session_id"] for d in listed["drafts"]] == [session_id]


@pytest.mark.asyncio
async def test_commit_requires_trigger(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    await ops.add_node(session_id, "set")
    with pytest.raises(MissingTrigger) as exc_info:
        await ops.commit(session_id)
    assert exc_info.value.details["current_nodes"] == ["set"]


@pytest.mark.asyncio
async def test_retry_count_tracks_consecutive_failures(ops: BuilderOperations, service) -> None:
    session_id = await _gate_draft(ops)
    service.failures = [
        WorkflowServiceError(RemoteErrorKind.TRANSIENT, "n8n API error: Bad Gateway", status_code=502)
        for _ in range(6)
    ]

    counts = []
    for _ in range(6):
        with pytest.raises(RemoteSubmissionFailed) as exc_info:
            await ops.commit(session_id)
        counts.append(exc_info.value.details["retry_count"])

    assert counts == [0, 1, 2, 3, 4, 5]
    details = exc_info.value.details
    assert details["error_kind"] == "transient"
    assert details["retryable"] is True
    assert "High retry count (5)" in details["retry_limit_warning"]
    assert "discard" in details["retry_limit_warning"]

    session = await ops.store.get(session_id)
    assert session.status == SessionStatus.ACTIVE
    assert session.count_operations("commit_failed") == 6

    result = await ops.commit(session_id)
    assert result["session_closed"] is True


@pytest.mark.asyncio
async def test_no_retry_warning_below_threshold(ops: BuilderOperations, service) -> None:
    session_id = await _gate_draft(ops)
    service.failures = [WorkflowServiceError(RemoteErrorKind.VALIDATION, "bad", status_code=400)]
    with pytest.raises(RemoteSubmissionFailed) as exc_info:
        await ops.commit(session_id)
    assert "retry_limit_warning" not in exc_info.value.details
    assert exc_info.value.details["retryable"] is False


@pytest.mark.asyncio
async def test_commit_timeout_is_transient(store: InMemorySessionStore, service) -> None:
    ops = BuilderOperations(store, service, config=BuilderConfig(commit_timeout_seconds=0.05))
    session_id = await _gate_draft(ops)
    service.delay = 1.0

    with pytest.raises(RemoteSubmissionFailed) as exc_info:
        await ops.commit(session_id)
    assert exc_info.value.details["error_kind"] == "transient"
    assert (await store.get(session_id)).status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_failure_on_lapsed_session_reports_expired(
    ops: BuilderOperations, service, clock, monkeypatch,
) -> None:
    session_id = await _gate_draft(ops)

    async def _lapse_then_fail(workflow):
        clock.advance(ops.store.ttl_seconds)
        raise WorkflowServiceError(RemoteErrorKind.TRANSIENT, "Bad Gateway", status_code=502)

    monkeypatch.setattr(service, "create_workflow", _lapse_then_fail)
    with pytest.raises(RemoteSubmissionFailed) as exc_info:
        await ops.commit(session_id)

    details = exc_info.value.details
    assert details["session_status"] == "expired"
    assert details["ttl_extended"] is False
    assert (await ops.store.get(session_id)).status == SessionStatus.EXPIRED


@pytest.mark.asyncio
async def test_commit_rejects_arity_drift(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    await ops.add_node(session_id, "manual", name="Start")
    await ops.add_node(session_id, "switch", name="Route", config={"rules": {"values": [{}, {}, {}]}})
    await ops.add_node(session_id, "set", name="C")
    await ops.connect(session_id, "Route", "C", from_output=2)

    session = await ops.store.get(session_id)
    session.draft.get_node("Route").parameters = {"rules": {"values": [{}]}}
    await ops.store.update(session)

    with pytest.raises(InvalidOutputIndex) as exc_info:
        await ops.commit(session_id)
    assert exc_info.value.details["invalid_connections"][0]["valid_range"] == "0 to 0"


# ── discard / list / resume / preview ──


@pytest.mark.asyncio
async def test_discard_is_idempotent(ops: BuilderOperations) -> None:
    session_id = (await ops.start("x"))["session_id"]
    assert (await ops.discard(session_id))["existed"] is True
    second = await ops.discard(session_id)
    assert second["discarded"] is True and second["existed"] is False


@pytest.mark.asyncio
async def test_list_includes_expired_by_default(ops: BuilderOperations, clock) -> None:
    await ops.start("old")
    clock.advance(1800)
    await ops.start("new")
    assert (await ops.list_drafts())["total"] == 2
    assert (await ops.list_drafts(include_expired=False))["total"] == 1


@pytest.mark.asyncio
async def test_resume_expired_session(ops: BuilderOperations, clock) -> None:
    session_id = await _gate_draft(ops)
    clock.advance(1800)
    result = await ops.resume(session_id)
    assert result["resumed"] is True
    assert result["nodes_count"] == 4
    new_id = result["session_id"]
    await ops.connect(new_id, "Start", "Gate")


@pytest.mark.asyncio
async def test_resume_unknown_session(ops: BuilderOperations) -> None:
    with pytest.raises(SessionNotFound):
        await ops.resume("builder-missing")


@pytest.mark.asyncio
async def test_preview(ops: BuilderOperations) -> None:
    session_id = await _gate_draft(ops)
    report = await ops.preview(session_id)
    assert report["valid"] is True
    assert report["session_id"] == session_id
    assert report["summary"]["trigger_type"] == "manual"

"""Tests for draft preview validation."""

from typing import List

from flowdraft.workflow.draft_inspector import find_arity_violations, find_cycles, inspect_draft
from flowdraft.workflow.draft_model import DraftConnection, DraftNode, NodeMetadata, WorkflowDraft
from flowdraft.workflow.node_catalog import resolve_outputs


def _node(name: str, node_type: str, params: dict = None) -> DraftNode:
    arity = resolve_outputs(node_type, params)
    return DraftNode(
        name=name, type=node_type, parameters=params or {},
        metadata=NodeMetadata(expected_outputs=arity.expected_outputs, category=arity.category),
    )


def _codes(issues: List[dict]) -> List[str]:
    return [i["code"] for i in issues]


def test_empty_draft_is_invalid() -> None:
    report = inspect_draft(WorkflowDraft(name="x"))
    assert not report["valid"]
    assert _codes(report["errors"]) == ["EMPTY_WORKFLOW"]


def test_missing_trigger_is_an_error() -> None:
    report = inspect_draft(WorkflowDraft(name="x", nodes=[_node("Set", "set")]))
    assert "NO_TRIGGER" in _codes(report["errors"])


def test_simple_chain_is_valid() -> None:
    draft = WorkflowDraft(name="x", nodes=[
        _node("Hook", "webhook", {"path": "in"}), _node("Reply", "respond"),
    ])
    report = inspect_draft(draft)
    assert report["valid"]
    assert report["warnings"] == []
    assert report["summary"] == {
        "nodes_count": 2, "connections_count": 0, "trigger_type": "webhook",
        "node_types": ["webhook", "respond"],
    }


def test_dangling_connection_reported() -> None:
    draft = WorkflowDraft(
        name="x",
        nodes=[_node("Hook", "manual"), _node("A", "set")],
        connections=[DraftConnection(from_node="Hook", to_node="Ghost")],
    )
    assert "INVALID_CONNECTION" in _codes(inspect_draft(draft)["errors"])


def test_arity_drift_detected_from_current_parameters() -> None:
    route = _node("Route", "switch", {"rules": {"values": [{}, {}, {}]}})
    draft = WorkflowDraft(
        name="x",
        nodes=[_node("Start", "manual"), route, _node("C", "set")],
        connections=[DraftConnection(from_node="Route", to_node="C", from_output=2)],
    )
    assert find_arity_violations(draft) == []

    route.parameters = {"rules": {"values": [{}]}}
    violations = find_arity_violations(draft)
    assert violations[0]["valid_range"] == "0 to 0"
    assert "INVALID_OUTPUT_INDEX" in _codes(inspect_draft(draft)["errors"])


def test_cycle_detected() -> None:
    draft = WorkflowDraft(
        name="x",
        nodes=[_node("Start", "manual"), _node("A", "set"), _node("B", "set")],
        connections=[
            DraftConnection(from_node="Start", to_node="A"),
            DraftConnection(from_node="A", to_node="B"),
            DraftConnection(from_node="B", to_node="A"),
        ],
    )
    report = inspect_draft(draft)
    assert "CIRCULAR_CONNECTION" in _codes(report["errors"])
    assert report["errors"][-1]["context"]["circular_paths"] == [["A", "B", "A"]]


def test_find_cycles_on_dag_is_empty() -> None:
    assert find_cycles({"a": ["b", "c"], "b": ["c"]}) == []


def test_orphans_and_missing_params_are_warnings() -> None:
    draft = WorkflowDraft(
        name="x",
        nodes=[_node("Start", "manual"), _node("Lonely", "set"), _node("Call", "http")],
        connections=[DraftConnection(from_node="Start", to_node="Call")],
    )
    report = inspect_draft(draft)
    assert report["valid"]
    codes = _codes(report["warnings"])
    assert "ORPHANED_NODES" in codes
    assert "MISSING_REQUIRED_PARAM" in codes
    orphaned = next(w for w in report["warnings"] if w["code"] == "ORPHANED_NODES")
    assert orphaned["context"]["orphaned_nodes"] == ["Lonely"]


def test_editor_incompatible_switch_warned() -> None:
    draft = WorkflowDraft(name="x", nodes=[
        _node("Start", "manual"),
        _node("Route", "switch", {"rules": {"values": [{}, {}]}}),
        _node("A", "set"), _node("B", "set"),
    ])
    report = inspect_draft(draft)
    assert "EDITOR_INCOMPATIBLE" in _codes(report["warnings"])


def test_unknown_credential_is_an_error() -> None:
    db = _node("DB", "postgres")
    db.credential = "missing"
    draft = WorkflowDraft(name="x", nodes=[_node("Start", "manual"), db])
    assert "UNKNOWN_CREDENTIAL" in _codes(inspect_draft(draft, {})["errors"])

"""
Builder Diagnostics — structured error payloads the agent can act on.

Each builder error carries enough context for the caller to fix the
request without re-reading the whole draft: who failed, what was
asked, why it is invalid, how to fix it, and what already exists.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from flowdraft.errors import (
    InvalidOutputIndex,
    NodeNotFound,
    SessionClosed,
    SessionNotFound,
    UnknownNodeType,
)
from flowdraft.workflow.draft_model import BuilderSession, DraftNode, WorkflowDraft
from flowdraft.workflow.knowledge import NODE_BEHAVIOR_REFERENCE
from flowdraft.workflow.node_catalog import NodeCatalog, count_routing_rules


def session_not_found(session_id: str) -> SessionNotFound:
    return SessionNotFound(
        f"Builder session '{session_id}' not found or expired",
        {
            "session_id": session_id,
            "recovery_hint": "Call list to find sessions, or start to create a new one",
        },
    )


def session_closed(session: BuilderSession) -> SessionClosed:
    return SessionClosed(
        f"Builder session '{session.session_id}' has expired",
        {
            "session_id": session.session_id,
            "expired_at": session.expires_at,
            "recovery_hint": "Call resume to recreate the session from its archived draft",
        },
    )


def unknown_node_type(node_type: str, catalog: NodeCatalog) -> UnknownNodeType:
    return UnknownNodeType(
        f"Unknown node type '{node_type}'",
        {"node_type": node_type, "supported_types": catalog.list_types()},
    )


def node_not_found(role: str, identifier: str, draft: WorkflowDraft) -> NodeNotFound:
    return NodeNotFound(
        f"{role.capitalize()} node '{identifier}' not found in workflow",
        {
            "node": identifier,
            "role": role,
            "available_nodes": draft.node_names(),
            "recovery_hint": "Check the node name or call preview to see current nodes",
        },
    )


def _arity_explanation(node: DraftNode, expected_outputs: int) -> Dict[str, Any]:
    if node.type == "switch":
        rules = count_routing_rules(node.parameters)
        if rules:
            explanation = (
                f"Switch node with {rules} rules has {expected_outputs} outputs "
                "(one per rule, no separate fallback output)"
            )
        else:
            explanation = (
                f"Switch node has no routing rules configured, so it is treated as having "
                f"{expected_outputs} outputs"
            )
        return {"rules_count": rules, "explanation": explanation}
    if node.type in ("if", "filter"):
        return {
            "explanation": f"{node.type} nodes always have exactly 2 outputs: "
            "[0] = true branch, [1] = false branch",
        }
    return {"explanation": f"{node.type} nodes have {expected_outputs} output(s)"}


def invalid_output_index(
    session_id: str,
    node: DraftNode,
    to_node: str,
    requested_output: int,
    expected_outputs: int,
    draft: WorkflowDraft,
) -> InvalidOutputIndex:
    """Rich failure for ``connect`` with an out-of-range ``from_output``."""
    suggested = expected_outputs - 1
    existing: List[Dict[str, Any]] = [
        {
            "to_node": c.to_node,
            "from_output": c.from_output,
            "valid": c.from_output < expected_outputs,
            "status": "ok" if c.from_output < expected_outputs else "invalid",
        }
        for c in draft.get_connections_from(node)
    ]
    details: Dict[str, Any] = {
        # who
        "node_name": node.name,
        "node_type": node.type,
        "node_id": node.id,
        "node_category": node.category.value,
        # what
        "error": f"Output index {requested_output} exceeds expected outputs",
        "requested_output": requested_output,
        "expected_outputs": expected_outputs,
        "valid_range": f"0 to {suggested}",
        # why
        **_arity_explanation(node, expected_outputs),
        # how
        "fix": {
            "action": "Change the from_output parameter of the connect call",
            "parameter": "from_output",
            "current_value": requested_output,
            "suggested_value": suggested,
            "example": (
                f"connect(session_id='{session_id}', from_node='{node.name}', "
                f"to_node='{to_node}', from_output={suggested})"
            ),
        },
        # context
        "existing_connections": existing,
        "reference": NODE_BEHAVIOR_REFERENCE if node.type in ("switch", "if", "filter") else None,
    }
    return InvalidOutputIndex(
        f"Connection failed: Node '{node.name}' only has {expected_outputs} output(s)",
        details,
    )


def recovery_hint(error_code: str, retry_count: int) -> str:
    base = "Session kept alive. Fix the issue and call commit again"
    hints: Dict[str, str] = {
        "empty_draft": "Session kept alive. Add nodes with add_node, then commit again",
        "missing_trigger": "Session kept alive. Add a webhook, schedule or manual trigger, then commit again",
        "invalid_output_index": "Session kept alive. Connections use ports that no longer exist; "
        "call preview to see them",
        "unknown_credential": "Session kept alive. Reference only credentials the session defines",
    }
    hint = hints.get(error_code, base)
    if retry_count:
        hint += f" (previous attempts: {retry_count})"
    return hint


def retry_limit_warning(retry_count: int, threshold: int) -> Optional[str]:
    if retry_count < threshold:
        return None
    return (
        f"High retry count ({retry_count}). Consider calling discard and starting a new "
        "session if the draft keeps failing."
    )

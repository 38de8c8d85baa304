"""
Draft Inspector — validate a draft without committing it.

Runs the same checks commit would (plus softer structural ones)
against the graph the synthesizer would produce, and reports them
as blocking errors and non-blocking warnings:

* Errors: empty draft, missing trigger, unknown node types,
  connections to missing nodes, ports beyond a node's current
  arity, unmapped credentials, cycles, invalid branching formats.
* Warnings: orphaned nodes, dead ends, missing common parameters,
  editor-incompatible branching formats.
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flowdraft.errors import UnknownCredential
from flowdraft.workflow.draft_model import DraftNode, WorkflowDraft
from flowdraft.workflow.graph_synthesizer import GraphSynthesizer
from flowdraft.workflow.knowledge import NodeKnowledgeBase, create_default_knowledge_base
from flowdraft.workflow.node_catalog import (
    NodeCatalog,
    NodeCategory,
    get_node_catalog,
    resolve_outputs,
)

logger = getLogger(__name__)

# Parameters without which a node of the given type does nothing useful.
_REQUIRED_PARAMS: Dict[str, Tuple[str, ...]] = {
    "http": ("url",),
    "code": ("jsCode",),
    "webhook": ("path",),
}


def _issue(kind: str, code: str, message: str, **context: Any) -> Dict[str, Any]:
    return {"type": kind, "code": code, "message": message, "context": context}


# ====================================================================
# Public API
# ====================================================================


def inspect_draft(
    draft: WorkflowDraft,
    credentials: Optional[Mapping[str, str]] = None,
    catalog: Optional[NodeCatalog] = None,
    knowledge: Optional[NodeKnowledgeBase] = None,
) -> Dict[str, Any]:
    """Inspect a draft and produce the preview report.

    Returns a dict containing:
        - ``valid``    : ``True`` when there are no errors
        - ``errors``   : blocking problems (commit would fail)
        - ``warnings`` : non-blocking problems
        - ``summary``  : node / connection counts, trigger and node types
    """
    cat = catalog or get_node_catalog()
    kb = knowledge or create_default_knowledge_base()
    errors: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []

    # ── Structure ──
    if not draft.nodes:
        errors.append(_issue(
            "error", "EMPTY_WORKFLOW", "Workflow must have at least one node", nodes_count=0,
        ))

    triggers = draft.trigger_nodes()
    if draft.nodes and not triggers:
        errors.append(_issue(
            "error", "NO_TRIGGER",
            "Workflow must have at least one trigger node",
            available_triggers=[s.simplified_type for s in cat.list_by_category(NodeCategory.TRIGGER)],
            current_nodes=[n.type for n in draft.nodes],
        ))

    unknown = [n.name for n in draft.nodes if n.type not in cat]
    if unknown:
        errors.append(_issue(
            "error", "UNKNOWN_NODE_TYPE",
            f"Found {len(unknown)} node(s) with unsupported types",
            nodes=unknown,
        ))

    # ── Connections ──
    dangling = [
        {"from": c.from_node, "to": c.to_node}
        for c in draft.connections
        if draft.get_node(c.from_node) is None or draft.get_node(c.to_node) is None
    ]
    if dangling:
        errors.append(_issue(
            "error", "INVALID_CONNECTION",
            f"Found {len(dangling)} connection(s) to non-existent nodes",
            invalid_connections=dangling,
        ))

    errors.extend(_arity_drift(draft, cat))

    # ── Effective graph (explicit + implicit edges) ──
    adjacency: Dict[str, List[str]] = {}
    try:
        synthesized = GraphSynthesizer(cat).synthesize(draft, credentials)
        for source, outputs in synthesized.connections.items():
            adjacency[source] = [link["node"] for port in outputs["main"] for link in port]
    except UnknownCredential as e:
        errors.append(_issue("error", "UNKNOWN_CREDENTIAL", e.message, **e.details))
        for conn in draft.connections:
            source, target = draft.get_node(conn.from_node), draft.get_node(conn.to_node)
            if source and target:
                adjacency.setdefault(source.name, []).append(target.name)

    cycles = find_cycles(adjacency)
    if cycles:
        errors.append(_issue(
            "error", "CIRCULAR_CONNECTION",
            "Detected circular connection(s) in workflow",
            circular_paths=cycles,
            suggestion="Remove or restructure connections to prevent infinite loops",
        ))

    targeted = {t for targets in adjacency.values() for t in targets}
    orphaned = [
        n.name for n in draft.nodes
        if n.category != NodeCategory.TRIGGER and n.name not in targeted
    ]
    if orphaned:
        warnings.append(_issue(
            "warning", "ORPHANED_NODES",
            f"Found {len(orphaned)} orphaned node(s) with no incoming connections",
            orphaned_nodes=orphaned,
            suggestion="These nodes will not execute unless connected",
        ))

    dead_ends = [
        n.name for n in draft.nodes
        if not adjacency.get(n.name) and n.type != "respond" and len(draft.nodes) > 1
    ]
    if dead_ends:
        warnings.append(_issue(
            "warning", "DEAD_END_NODES",
            f"Found {len(dead_ends)} node(s) with no outgoing connections",
            dead_end_nodes=dead_ends,
            suggestion="These nodes execute but their output is not used",
        ))

    # ── Per-node parameters ──
    for node in draft.nodes:
        warnings.extend(_missing_params(node))
        result = kb.validate(node.type, node.parameters)
        for message in result.errors:
            errors.append(_issue(
                "error", "INVALID_NODE_FORMAT", message,
                node_name=node.name, node_type=node.type, matched_format=result.matched_format,
            ))
        for message in result.warnings:
            warnings.append(_issue(
                "warning",
                "EDITOR_INCOMPATIBLE" if not result.editor_compatible else "NODE_FORMAT",
                message,
                node_name=node.name, node_type=node.type, matched_format=result.matched_format,
            ))

    logger.debug(
        f"Draft '{draft.name}' inspected: {len(errors)} errors, {len(warnings)} warnings"
    )

    return {
        "valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "summary": {
            "nodes_count": len(draft.nodes),
            "connections_count": len(draft.connections),
            "trigger_type": triggers[0].type if triggers else None,
            "node_types": [n.type for n in draft.nodes],
        },
    }


def find_arity_violations(
    draft: WorkflowDraft,
    catalog: Optional[NodeCatalog] = None,
) -> List[Dict[str, Any]]:
    """Connections whose ``from_output`` no longer exists on the source.

    Arity is recomputed from the node's current parameters, so a
    switch whose rules shrank after connecting shows up here.
    """
    cat = catalog or get_node_catalog()
    violations: List[Dict[str, Any]] = []
    for conn in draft.connections:
        source = draft.get_node(conn.from_node)
        if source is None or source.type not in cat:
            continue
        expected = resolve_outputs(source.type, source.parameters, cat).expected_outputs
        if conn.from_output >= expected:
            violations.append({
                "from_node": source.name,
                "to_node": conn.to_node,
                "from_output": conn.from_output,
                "expected_outputs": expected,
                "valid_range": f"0 to {expected - 1}",
            })
    return violations


def find_cycles(adjacency: Mapping[str, List[str]]) -> List[List[str]]:
    """Depth-first cycle search; each cycle is returned closed (``[a, b, a]``)."""
    visited: set = set()
    stack: List[str] = []
    on_stack: set = set()
    cycles: List[List[str]] = []

    def _visit(node: str) -> None:
        visited.add(node)
        stack.append(node)
        on_stack.add(node)
        for neighbor in adjacency.get(node, []):
            if neighbor not in visited:
                _visit(neighbor)
            elif neighbor in on_stack:
                cycles.append(stack[stack.index(neighbor):] + [neighbor])
        stack.pop()
        on_stack.discard(node)

    for node in list(adjacency):
        if node not in visited:
            _visit(node)
    return cycles


# ====================================================================
# Helpers
# ====================================================================


def _arity_drift(draft: WorkflowDraft, catalog: NodeCatalog) -> List[Dict[str, Any]]:
    return [
        _issue(
            "error", "INVALID_OUTPUT_INDEX",
            f"Connection {v['from_node']} → {v['to_node']} uses output {v['from_output']}, "
            f"but '{v['from_node']}' now has {v['expected_outputs']} output(s)",
            **v,
        )
        for v in find_arity_violations(draft, catalog)
    ]


def _missing_params(node: DraftNode) -> List[Dict[str, Any]]:
    issues = []
    required = list(_REQUIRED_PARAMS.get(node.type, ()))
    if node.type == "postgres" and node.parameters.get("operation") == "executeQuery":
        required.append("query")
    for param in required:
        value = node.parameters.get(param)
        if value is None or (isinstance(value, str) and not value.strip()):
            issues.append(_issue(
                "warning", "MISSING_REQUIRED_PARAM",
                f"Node '{node.name}' ({node.type}) is missing parameter '{param}'",
                node_name=node.name, node_type=node.type, missing_param=param,
            ))
    return issues

"""
Node Factory — parameters, names and positions for new draft nodes.

Agents describe a node loosely (``type``, an optional ``action`` and a
flat ``config``); these helpers turn that into the n8n parameter
shape for the type, a unique display name and an auto-layout position.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from flowdraft.workflow.draft_model import DraftNode
from flowdraft.workflow.node_catalog import NodeTypeSpec

DEFAULT_CODE = "// Add your code here\nreturn items;"

_POSTGRES_OPERATIONS = {
    "query": "executeQuery",
    "executequery": "executeQuery",
    "insert": "insert",
    "update": "update",
    "delete": "delete",
}


def build_parameters(
    node_type: str,
    action: Optional[str] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Map a simplified ``config`` (+ ``action``) to n8n parameters.

    Unrecognised keys pass through unchanged.
    """
    cfg = dict(config or {})
    params: Dict[str, Any] = dict(cfg)

    if node_type == "postgres":
        operation = _POSTGRES_OPERATIONS.get((action or "").lower())
        if operation:
            params["operation"] = operation

    elif node_type == "http":
        params["method"] = cfg.get("method") or "GET"
        if cfg.get("url"):
            params["url"] = cfg["url"]

    elif node_type == "webhook":
        params.pop("method", None)
        params["httpMethod"] = cfg.get("method") or cfg.get("httpMethod") or "POST"
        if cfg.get("path"):
            params["path"] = cfg["path"]

    elif node_type == "schedule":
        # daily at midnight
        params.setdefault("rule", {"interval": [{"field": "days", "triggerAtHour": 0}]})

    elif node_type == "code":
        params.pop("code", None)
        params["jsCode"] = cfg.get("code") or cfg.get("jsCode") or DEFAULT_CODE
        params["mode"] = "runOnceForAllItems"

    elif node_type == "discord":
        for key in ("content", "channelId"):
            if cfg.get(key):
                params[key] = cfg[key]

    elif node_type == "respond":
        params["respondWith"] = "text"
        status_code = params.pop("statusCode", None)
        if status_code:
            params["options"] = {**params.get("options", {}), "responseCode": status_code}
        body = params.pop("body", None)
        if body:
            params["responseBody"] = body

    return params


def default_node_name(spec: NodeTypeSpec, nodes: Sequence[DraftNode]) -> str:
    """``"<Label>"`` for the first node of a type, ``"<Label> N"`` after that.

    The suffix is bumped until the name is unused.
    """
    taken = {n.name for n in nodes}
    same_type = sum(1 for n in nodes if n.type == spec.simplified_type)
    if same_type == 0 and spec.label not in taken:
        return spec.label
    suffix = max(same_type + 1, 2)
    while f"{spec.label} {suffix}" in taken:
        suffix += 1
    return f"{spec.label} {suffix}"


def next_position(
    nodes: Sequence[DraftNode],
    spacing: int,
    start: Sequence[int],
) -> List[int]:
    """Place a node right of the rightmost one, at the average height."""
    if not nodes:
        return [int(start[0]), int(start[1])]
    max_x = max(n.position[0] for n in nodes)
    avg_y = sum(n.position[1] for n in nodes) / len(nodes)
    return [max_x + spacing, math.floor(avg_y + 0.5)]

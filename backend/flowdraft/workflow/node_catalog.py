"""
Node Type Catalog — simplified type names → n8n node definitions.

Each ``NodeTypeSpec`` maps a short, agent-friendly type name
(``webhook``, ``if``, ``switch`` …) to the full n8n node type,
its type version, category, default parameters and the rule that
decides how many output ports the node exposes.

The arity rules live here as well (``resolve_outputs``) so the
metadata stamped on a node when it is added and the value recomputed
during validation always come from the same function.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = getLogger(__name__)

# Outputs assumed for a multi-way router whose rules are not configured yet.
DEFAULT_ROUTER_OUTPUTS = 2


# ============================================================================
# Categories & arity rules
# ============================================================================


class NodeCategory(str, Enum):
    """Role a node plays in the graph."""
    TRIGGER = "trigger"
    ACTION = "action"
    TRANSFORM = "transform"
    BRANCHING = "branching"


class ArityRule(str, Enum):
    """How the number of output ports is decided."""
    SINGLE = "single"        # exactly one output
    BINARY = "binary"        # true / false
    PER_RULE = "per_rule"    # one output per configured routing rule


def count_routing_rules(config: Optional[Mapping[str, Any]]) -> int:
    """Count configured routing rules of a multi-way branch.

    Accepts ``rules.values`` (rules mode), ``rules.rules``
    (expression + multipleOutputs mode) or a bare list under ``rules``.
    """
    if not config:
        return 0
    rules = config.get("rules")
    if isinstance(rules, list):
        return len(rules)
    if isinstance(rules, Mapping):
        for key in ("values", "rules"):
            entries = rules.get(key)
            if isinstance(entries, list):
                return len(entries)
    return 0


def _router_outputs(config: Optional[Mapping[str, Any]]) -> int:
    count = count_routing_rules(config)
    return count if count > 0 else DEFAULT_ROUTER_OUTPUTS


_ARITY: Dict[ArityRule, Callable[[Optional[Mapping[str, Any]]], int]] = {
    ArityRule.SINGLE: lambda _config: 1,
    ArityRule.BINARY: lambda _config: 2,
    ArityRule.PER_RULE: _router_outputs,
}


# ============================================================================
# Node type specs
# ============================================================================


@dataclass(frozen=True)
class NodeTypeSpec:
    """Static description of one simplified node type."""

    simplified_type: str
    n8n_type: str
    type_version: int
    category: NodeCategory
    label: str
    arity: ArityRule = ArityRule.SINGLE
    default_params: Dict[str, Any] = field(default_factory=dict)
    credential_type: Optional[str] = None
    output_labels: List[str] = field(default_factory=list)
    description: str = ""

    @property
    def is_trigger(self) -> bool:
        return self.category == NodeCategory.TRIGGER

    @property
    def is_branching(self) -> bool:
        return self.category == NodeCategory.BRANCHING


@dataclass(frozen=True)
class NodeArity:
    """Result of ``resolve_outputs``."""

    expected_outputs: int
    category: NodeCategory


class NodeCatalog:
    """Case-insensitive lookup of ``NodeTypeSpec`` by simplified type."""

    def __init__(self) -> None:
        self._specs: Dict[str, NodeTypeSpec] = {}

    def register(self, spec: NodeTypeSpec) -> NodeTypeSpec:
        key = spec.simplified_type.lower()
        if key in self._specs:
            raise ValueError(f"duplicate node type: {spec.simplified_type!r}")
        self._specs[key] = spec
        return spec

    def get(self, simplified_type: str) -> Optional[NodeTypeSpec]:
        return self._specs.get(simplified_type.strip().lower())

    def find_by_n8n_type(self, n8n_type: str) -> Optional[NodeTypeSpec]:
        for spec in self._specs.values():
            if spec.n8n_type == n8n_type:
                return spec
        return None

    def list_types(self) -> List[str]:
        return list(self._specs)

    def list_by_category(self, category: NodeCategory) -> List[NodeTypeSpec]:
        return [s for s in self._specs.values() if s.category == category]

    def __contains__(self, simplified_type: str) -> bool:
        return self.get(simplified_type) is not None

    def __len__(self) -> int:
        return len(self._specs)


def resolve_outputs(
    simplified_type: str,
    config: Optional[Mapping[str, Any]] = None,
    catalog: Optional[NodeCatalog] = None,
) -> NodeArity:
    """Compute ``(expected_outputs, category)`` for a node type.

    Raises ``KeyError`` for types missing from the catalog.
    """
    cat = catalog or get_node_catalog()
    spec = cat.get(simplified_type)
    if spec is None:
        raise KeyError(simplified_type)
    return NodeArity(
        expected_outputs=_ARITY[spec.arity](config),
        category=spec.category,
    )


# ============================================================================
# Built-in catalog
# ============================================================================


def _build_default_catalog() -> NodeCatalog:
    catalog = NodeCatalog()

    # ── Triggers ──
    catalog.register(NodeTypeSpec(
        simplified_type="webhook",
        n8n_type="n8n-nodes-base.webhook",
        type_version=2,
        category=NodeCategory.TRIGGER,
        label="Webhook",
        default_params={"httpMethod": "POST", "responseMode": "onReceived"},
        description="Start the workflow from an incoming HTTP request",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="schedule",
        n8n_type="n8n-nodes-base.scheduleTrigger",
        type_version=1,
        category=NodeCategory.TRIGGER,
        label="Schedule Trigger",
        description="Start the workflow on a schedule",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="manual",
        n8n_type="n8n-nodes-base.manualTrigger",
        type_version=1,
        category=NodeCategory.TRIGGER,
        label="Manual Trigger",
        description="Start the workflow by hand from the editor",
    ))

    # ── Actions ──
    catalog.register(NodeTypeSpec(
        simplified_type="http",
        n8n_type="n8n-nodes-base.httpRequest",
        type_version=4,
        category=NodeCategory.ACTION,
        label="HTTP Request",
        default_params={"method": "GET"},
        credential_type="httpBasicAuth",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="postgres",
        n8n_type="n8n-nodes-base.postgres",
        type_version=2,
        category=NodeCategory.ACTION,
        label="Postgres",
        credential_type="postgres",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="discord",
        n8n_type="n8n-nodes-base.discord",
        type_version=2,
        category=NodeCategory.ACTION,
        label="Discord",
        default_params={"resource": "message"},
        credential_type="discordApi",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="respond",
        n8n_type="n8n-nodes-base.respondToWebhook",
        type_version=1,
        category=NodeCategory.ACTION,
        label="Respond to Webhook",
        default_params={"respondWith": "text"},
    ))

    # ── Branching ──
    catalog.register(NodeTypeSpec(
        simplified_type="if",
        n8n_type="n8n-nodes-base.if",
        type_version=1,
        category=NodeCategory.BRANCHING,
        label="IF",
        arity=ArityRule.BINARY,
        output_labels=["true", "false"],
        description="Route items to the true or false output",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="filter",
        n8n_type="n8n-nodes-base.filter",
        type_version=2,
        category=NodeCategory.BRANCHING,
        label="Filter",
        arity=ArityRule.BINARY,
        output_labels=["kept", "discarded"],
        description="Keep items matching conditions, discard the rest",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="switch",
        n8n_type="n8n-nodes-base.switch",
        type_version=1,
        category=NodeCategory.BRANCHING,
        label="Switch",
        arity=ArityRule.PER_RULE,
        description="Route items to one output per routing rule",
    ))

    # ── Transforms ──
    catalog.register(NodeTypeSpec(
        simplified_type="merge",
        n8n_type="n8n-nodes-base.merge",
        type_version=2,
        category=NodeCategory.TRANSFORM,
        label="Merge",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="set",
        n8n_type="n8n-nodes-base.set",
        type_version=3,
        category=NodeCategory.TRANSFORM,
        label="Set",
    ))
    catalog.register(NodeTypeSpec(
        simplified_type="code",
        n8n_type="n8n-nodes-base.code",
        type_version=2,
        category=NodeCategory.TRANSFORM,
        label="Code",
        default_params={"language": "javascript", "mode": "runOnceForAllItems"},
    ))

    logger.debug(f"Node catalog built: {len(catalog)} node types")
    return catalog


_catalog_instance: Optional[NodeCatalog] = None


def get_node_catalog() -> NodeCatalog:
    """Return the shared, read-only built-in catalog."""
    global _catalog_instance
    if _catalog_instance is None:
        _catalog_instance = _build_default_catalog()
    return _catalog_instance

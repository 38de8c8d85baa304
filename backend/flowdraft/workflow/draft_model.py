"""
Draft Data Models — builder sessions, draft nodes and connections.

These are the serializable documents persisted by the session
store (one JSON document per session) and consumed by the
``GraphSynthesizer`` when a draft is committed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from flowdraft.workflow.node_catalog import NodeCategory


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()


def parse_iso(value: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_session_id() -> str:
    return f"builder-{uuid.uuid4().hex[:8]}"


def new_node_id() -> str:
    return f"node-{uuid.uuid4().hex[:8]}"


class SessionStatus(str, Enum):
    """Builder session lifecycle status."""
    ACTIVE = "active"
    EXPIRED = "expired"
    COMMITTED = "committed"


# ============================================================================
# Draft graph
# ============================================================================


class NodeMetadata(BaseModel):
    """Arity information stamped on a node when it is added."""

    expected_outputs: int = Field(default=1, ge=1)
    category: NodeCategory = NodeCategory.ACTION


class DraftNode(BaseModel):
    """A single node in a draft.

    ``name`` is the key agents use in ``connect``; ``id`` never changes.
    ``type`` is the simplified type (``webhook``, ``if`` …) and
    ``resolved_type`` the full n8n type it maps to.
    """

    id: str = Field(default_factory=new_node_id)
    name: str
    type: str
    resolved_type: Optional[str] = None
    type_version: int = 1
    parameters: Dict[str, Any] = Field(default_factory=dict)
    position: List[int] = Field(default_factory=lambda: [0, 0], min_length=2, max_length=2)
    credential: Optional[str] = None
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    @property
    def expected_outputs(self) -> int:
        return self.metadata.expected_outputs

    @property
    def category(self) -> NodeCategory:
        return self.metadata.category

    def matches(self, identifier: str) -> bool:
        return identifier in (self.id, self.name)


class DraftConnection(BaseModel):
    """A directed edge between two draft nodes, addressed by name."""

    from_node: str
    to_node: str
    from_output: int = Field(default=0, ge=0)
    to_input: int = Field(default=0, ge=0)


class OperationLogEntry(BaseModel):
    """One append-only entry of a session's operation history."""

    operation: str
    timestamp: str = Field(default_factory=now_iso)
    details: Dict[str, Any] = Field(default_factory=dict)


def _default_settings() -> Dict[str, Any]:
    return {"executionOrder": "v1"}


class WorkflowDraft(BaseModel):
    """The in-progress graph owned by one builder session."""

    name: str
    description: Optional[str] = None
    nodes: List[DraftNode] = Field(default_factory=list)
    connections: List[DraftConnection] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=_default_settings)

    def get_node(self, identifier: str) -> Optional[DraftNode]:
        """Find a node by id or name."""
        for n in self.nodes:
            if n.matches(identifier):
                return n
        return None

    def node_names(self) -> List[str]:
        return [n.name for n in self.nodes]

    def get_connections_from(self, node: DraftNode) -> List[DraftConnection]:
        """All connections whose source is ``node`` (by name or id)."""
        return [c for c in self.connections if node.matches(c.from_node)]

    def get_connections_to(self, node: DraftNode) -> List[DraftConnection]:
        return [c for c in self.connections if node.matches(c.to_node)]

    def trigger_nodes(self) -> List[DraftNode]:
        return [n for n in self.nodes if n.category == NodeCategory.TRIGGER]

    def has_trigger(self) -> bool:
        return bool(self.trigger_nodes())


# ============================================================================
# Session document
# ============================================================================


class BuilderSession(BaseModel):
    """Addressable, time-boxed container for one draft plus its history."""

    session_id: str = Field(default_factory=new_session_id)
    name: str
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    expires_at: str = Field(default_factory=now_iso)
    version: int = 0
    draft: WorkflowDraft
    operations_log: List[OperationLogEntry] = Field(default_factory=list)
    credentials: Dict[str, str] = Field(default_factory=dict)

    def touch(self, ttl_seconds: int, now: Optional[datetime] = None) -> None:
        """Refresh ``updated_at`` and push ``expires_at`` out by the TTL."""
        moment = now or utcnow()
        self.updated_at = moment.isoformat()
        self.expires_at = (moment + timedelta(seconds=ttl_seconds)).isoformat()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return parse_iso(self.expires_at) <= (now or utcnow())

    def log_operation(self, operation: str, **details: Any) -> OperationLogEntry:
        entry = OperationLogEntry(operation=operation, details=details)
        self.operations_log.append(entry)
        return entry

    def count_operations(self, operation: str) -> int:
        return sum(1 for e in self.operations_log if e.operation == operation)

    @property
    def last_operation(self) -> str:
        if not self.operations_log:
            return "created"
        return self.operations_log[-1].operation

    def summary(self) -> Dict[str, Any]:
        """Lightweight listing view without the draft body."""
        triggers = self.draft.trigger_nodes()
        return {
            "session_id": self.session_id,
            "name": self.name,
            "status": self.status.value,
            "nodes_count": len(self.draft.nodes),
            "connections_count": len(self.draft.connections),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "expires_at": self.expires_at,
            "last_operation": self.last_operation,
            "preview": {
                "trigger_type": triggers[0].type if triggers else None,
                "node_types": [n.type for n in self.draft.nodes],
            },
        }

"""
Workflow Drafts — the graph side of the builder.

Architecture:
    node_catalog       — simplified type → n8n node definition + output arity
    knowledge          — parameter-format rules for branching nodes
    draft_model        — session / draft / node / connection documents
    graph_synthesizer  — compiles a draft into n8n workflow JSON
    draft_inspector    — preview validation without committing
"""

from flowdraft.workflow.node_catalog import (
    DEFAULT_ROUTER_OUTPUTS,
    ArityRule,
    NodeArity,
    NodeCatalog,
    NodeCategory,
    NodeTypeSpec,
    count_routing_rules,
    get_node_catalog,
    resolve_outputs,
)
from flowdraft.workflow.knowledge import (
    NodeKnowledgeBase,
    ValidationResult,
    create_default_knowledge_base,
)
from flowdraft.workflow.draft_model import (
    BuilderSession,
    DraftConnection,
    DraftNode,
    NodeMetadata,
    OperationLogEntry,
    SessionStatus,
    WorkflowDraft,
)
from flowdraft.workflow.graph_synthesizer import GraphSynthesizer, SynthesizedWorkflow, synthesize
from flowdraft.workflow.draft_inspector import find_arity_violations, find_cycles, inspect_draft

__all__ = [
    "DEFAULT_ROUTER_OUTPUTS",
    "ArityRule",
    "NodeArity",
    "NodeCatalog",
    "NodeCategory",
    "NodeTypeSpec",
    "count_routing_rules",
    "get_node_catalog",
    "resolve_outputs",
    "NodeKnowledgeBase",
    "ValidationResult",
    "create_default_knowledge_base",
    "BuilderSession",
    "DraftConnection",
    "DraftNode",
    "NodeMetadata",
    "OperationLogEntry",
    "SessionStatus",
    "WorkflowDraft",
    "GraphSynthesizer",
    "SynthesizedWorkflow",
    "synthesize",
    "find_arity_violations",
    "find_cycles",
    "inspect_draft",
]

"""
Graph Synthesizer — compile a WorkflowDraft into n8n workflow JSON.

Steps:
    1. Render every draft node as an n8n node (type defaults merged
       under the user parameters, credentials attached by name).
    2. Wire explicit connections, keyed by source node name and port.
    3. Chain nodes the agent left unconnected: a plain node feeds the
       next node in draft order, a branching node fans out one port
       per following unused node. Triggers are never auto-targeted.

The output is the ``{name, nodes, connections, settings}`` document
the n8n API accepts on create.
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from flowdraft.errors import UnknownCredential
from flowdraft.workflow.draft_model import DraftNode, WorkflowDraft
from flowdraft.workflow.node_catalog import (
    NodeCatalog,
    NodeCategory,
    get_node_catalog,
    resolve_outputs,
)

logger = getLogger(__name__)

_N8N_BASE_PREFIX = "n8n-nodes-base."


class SynthesizedWorkflow(BaseModel):
    """Final graph in the remote service's native format."""

    name: str
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def targets_of(self, source: str, port: int = 0) -> List[str]:
        """Names of nodes wired to ``source``'s output ``port``."""
        ports = self.connections.get(source, {}).get("main", [])
        if port >= len(ports):
            return []
        return [link["node"] for link in ports[port]]


class GraphSynthesizer:
    """Turn a draft plus its credential map into a ``SynthesizedWorkflow``.

    Usage::

        synthesizer = GraphSynthesizer()
        workflow = synthesizer.synthesize(session.draft, session.credentials)
        await client.create_workflow(workflow.to_dict())
    """

    def __init__(self, catalog: Optional[NodeCatalog] = None) -> None:
        self._catalog = catalog or get_node_catalog()

    # ========================================================================
    # Public
    # ========================================================================

    def synthesize(
        self,
        draft: WorkflowDraft,
        credentials: Optional[Mapping[str, str]] = None,
    ) -> SynthesizedWorkflow:
        creds = dict(credentials or {})
        nodes = [self._render_node(n, creds) for n in draft.nodes]

        connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = {}
        targeted: Set[str] = set()

        # ── Explicit edges ──
        for conn in draft.connections:
            source = draft.get_node(conn.from_node)
            target = draft.get_node(conn.to_node)
            if source is None or target is None:
                logger.warning(
                    f"Skipping dangling connection {conn.from_node} → {conn.to_node} "
                    f"in draft '{draft.name}'"
                )
                continue
            ports = self._ports_for(connections, source, conn.from_output + 1)
            ports[conn.from_output].append(_link(target.name, conn.to_input))
            targeted.add(target.name)

        # ── Implicit edges ──
        implicit = 0
        for index, node in enumerate(draft.nodes):
            if draft.get_connections_from(node):
                continue
            following = draft.nodes[index + 1:]

            if node.category == NodeCategory.BRANCHING:
                port_count = self._outputs_of(node)
                candidates = [n for n in following if _can_auto_target(n, targeted)]
                ports = self._ports_for(connections, node, port_count)
                for port, target in zip(range(port_count), candidates):
                    ports[port].append(_link(target.name))
                    targeted.add(target.name)
                    implicit += 1
            elif following and _can_auto_target(following[0], targeted):
                target = following[0]
                ports = self._ports_for(connections, node, 1)
                ports[0].append(_link(target.name))
                targeted.add(target.name)
                implicit += 1

        logger.info(
            f"Draft '{draft.name}' synthesized: {len(nodes)} nodes, "
            f"{len(draft.connections)} explicit + {implicit} implicit connections"
        )

        return SynthesizedWorkflow(
            name=draft.name,
            nodes=nodes,
            connections=connections,
            settings=dict(draft.settings),
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _render_node(self, node: DraftNode, credentials: Dict[str, str]) -> Dict[str, Any]:
        spec = self._catalog.get(node.type)
        defaults = dict(spec.default_params) if spec else {}
        rendered: Dict[str, Any] = {
            "id": node.id,
            "name": node.name,
            "type": node.resolved_type
            or (spec.n8n_type if spec else f"{_N8N_BASE_PREFIX}{node.type}"),
            "typeVersion": node.type_version,
            "position": list(node.position),
            "parameters": {**defaults, **node.parameters},
        }

        if node.credential:
            if node.credential not in credentials:
                raise UnknownCredential(
                    f"Node '{node.name}' references credential '{node.credential}' "
                    f"which this session does not define",
                    {
                        "node_name": node.name,
                        "credential": node.credential,
                        "available_credentials": sorted(credentials),
                        "recovery_hint": "Start a session with this credential in its credentials map, "
                        "or remove the credential from the node",
                    },
                )
            credential_type = spec.credential_type if spec else None
            if credential_type:
                rendered["credentials"] = {
                    credential_type: {"id": credentials[node.credential], "name": node.credential},
                }
            else:
                logger.warning(
                    f"Node '{node.name}' of type '{node.type}' takes no credentials; "
                    f"ignoring '{node.credential}'"
                )

        return rendered

    def _outputs_of(self, node: DraftNode) -> int:
        if node.type in self._catalog:
            return resolve_outputs(node.type, node.parameters, self._catalog).expected_outputs
        return node.expected_outputs

    def _ports_for(
        self,
        connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]],
        node: DraftNode,
        minimum: int,
    ) -> List[List[Dict[str, Any]]]:
        """Port lists of ``node``, padded with empty ports up to its arity."""
        ports = connections.setdefault(node.name, {"main": []})["main"]
        wanted = max(minimum, self._outputs_of(node))
        while len(ports) < wanted:
            ports.append([])
        return ports


def _link(target: str, index: int = 0) -> Dict[str, Any]:
    return {"node": target, "type": "main", "index": index}


def _can_auto_target(node: DraftNode, targeted: Set[str]) -> bool:
    return node.category != NodeCategory.TRIGGER and node.name not in targeted


def synthesize(
    draft: WorkflowDraft,
    credentials: Optional[Mapping[str, str]] = None,
    catalog: Optional[NodeCatalog] = None,
) -> SynthesizedWorkflow:
    """Shortcut for ``GraphSynthesizer(catalog).synthesize(...)``."""
    return GraphSynthesizer(catalog).synthesize(draft, credentials)

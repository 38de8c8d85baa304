"""
Builder Operations — the draft session engine.

An agent builds a workflow over many small calls against one session
id instead of holding the whole graph in its context:

    start → add_node* → connect* → preview? → commit | discard

Every mutating call validates its input against the current draft
before anything is written, so a rejected call leaves the draft exactly
as it was and only refreshes the session TTL. Commit failures never
close the session: the draft stays alive (TTL refreshed) with the
failure recorded in its operation log, ready for a fixed retry.

Usage::

    ops = BuilderOperations(store, N8NClient.from_config())
    started = await ops.start("Order intake")
    await ops.add_node(started["session_id"], "webhook", config={"path": "orders"})
    await ops.add_node(started["session_id"], "postgres", action="insert")
    result = await ops.commit(started["session_id"], activate=True)
"""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TypeVar

from flowdraft.builder import diagnostics
from flowdraft.builder.node_factory import build_parameters, default_node_name, next_position
from flowdraft.builder.session_store import SessionStore
from flowdraft.config.builder_config import BuilderConfig
from flowdraft.errors import (
    BuilderError,
    DuplicateNodeName,
    EmptyDraft,
    InvalidConnection,
    InvalidInput,
    InvalidOutputIndex,
    MissingTrigger,
    RemoteSubmissionFailed,
    SessionClosed,
    SessionConflict,
    SessionNotFound,
    UnknownCredential,
)
from flowdraft.logging import get_session_logger
from flowdraft.n8n.base import RemoteErrorKind, WorkflowService, WorkflowServiceError
from flowdraft.workflow.draft_inspector import find_arity_violations, inspect_draft
from flowdraft.workflow.draft_model import (
    BuilderSession,
    DraftConnection,
    DraftNode,
    NodeMetadata,
    SessionStatus,
    WorkflowDraft,
)
from flowdraft.workflow.graph_synthesizer import GraphSynthesizer
from flowdraft.workflow.knowledge import NodeKnowledgeBase, create_default_knowledge_base
from flowdraft.workflow.node_catalog import (
    NodeCatalog,
    NodeCategory,
    get_node_catalog,
    resolve_outputs,
)

logger = getLogger(__name__)

_T = TypeVar("_T")

# Re-read/re-apply attempts when another writer bumped the session version.
_MAX_CONFLICT_RETRIES = 3


class BuilderOperations:
    """Session operations over a ``SessionStore`` and a ``WorkflowService``."""

    def __init__(
        self,
        store: SessionStore,
        service: WorkflowService,
        config: Optional[BuilderConfig] = None,
        catalog: Optional[NodeCatalog] = None,
        knowledge: Optional[NodeKnowledgeBase] = None,
    ) -> None:
        self._store = store
        self._service = service
        self._config = config or store.config
        self._catalog = catalog or get_node_catalog()
        self._knowledge = knowledge or create_default_knowledge_base()
        self._synthesizer = GraphSynthesizer(self._catalog)

    @property
    def store(self) -> SessionStore:
        return self._store

    # ========================================================================
    # start
    # ========================================================================

    async def start(
        self,
        name: str,
        description: Optional[str] = None,
        credentials: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Open a new draft session."""
        if not name or not name.strip():
            raise InvalidInput("Workflow name must not be empty", {"field": "name"})

        session = BuilderSession(
            name=name.strip(),
            draft=WorkflowDraft(name=name.strip(), description=description),
            credentials=dict(credentials or {}),
        )
        session.log_operation("session_started", name=session.name)
        await self._store.create(session)

        get_session_logger(session.session_id).info(f"Draft session started: {session.name}")
        return {
            "session_id": session.session_id,
            "name": session.name,
            "expires_at": session.expires_at,
            "ttl_seconds": self._store.ttl_seconds,
            "message": "Builder session started. Add nodes with add_node, "
            "link them with connect, then commit.",
        }

    # ========================================================================
    # add_node
    # ========================================================================

    async def add_node(
        self,
        session_id: str,
        node_type: str,
        name: Optional[str] = None,
        action: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        credential: Optional[str] = None,
        position: Optional[Sequence[int]] = None,
    ) -> Dict[str, Any]:
        """Append a node to the draft."""
        spec = self._catalog.get(node_type)
        if spec is None:
            await self._extend_ttl(session_id)
            raise diagnostics.unknown_node_type(node_type, self._catalog)
        if position is not None and len(position) != 2:
            await self._extend_ttl(session_id)
            raise InvalidInput("position must be [x, y]", {"field": "position", "value": list(position)})

        parameters = build_parameters(spec.simplified_type, action, config)
        arity = resolve_outputs(spec.simplified_type, parameters, self._catalog)

        def _apply(session: BuilderSession) -> DraftNode:
            draft = session.draft
            if name and name.strip():
                node_name = name.strip()
                if node_name in draft.node_names():
                    raise DuplicateNodeName(
                        f"A node named '{node_name}' already exists in this draft",
                        {
                            "node_name": node_name,
                            "existing_nodes": draft.node_names(),
                            "suggested_name": default_node_name(spec, draft.nodes),
                        },
                    )
            else:
                node_name = default_node_name(spec, draft.nodes)

            if credential and credential not in session.credentials:
                raise UnknownCredential(
                    f"Credential '{credential}' is not defined for this session",
                    {
                        "credential": credential,
                        "available_credentials": sorted(session.credentials),
                        "recovery_hint": "Pass the credential in the credentials map of start",
                    },
                )

            node = DraftNode(
                name=node_name,
                type=spec.simplified_type,
                resolved_type=spec.n8n_type,
                type_version=spec.type_version,
                parameters=parameters,
                position=list(position) if position is not None else next_position(
                    draft.nodes, self._config.node_spacing, self._config.start_position,
                ),
                credential=credential,
                metadata=NodeMetadata(
                    expected_outputs=arity.expected_outputs,
                    category=arity.category,
                ),
            )
            draft.nodes.append(node)
            session.log_operation(
                "add_node", node_id=node.id, node_name=node.name, node_type=node.type,
            )
            return node

        session, node = await self._mutate(session_id, _apply)

        check = self._knowledge.validate(node.type, node.parameters)
        nodes_count = len(session.draft.nodes)
        get_session_logger(session_id).info(
            f"Node added: {node.name} ({node.type}, {node.expected_outputs} output(s))"
        )
        return {
            "node_id": node.id,
            "node_name": node.name,
            "nodes_count": nodes_count,
            "expected_outputs": node.expected_outputs,
            "category": node.category.value,
            "hint": (
                "First node added. Add more nodes or call connect to link them."
                if nodes_count == 1
                else f"{nodes_count} nodes in draft. Call connect to link them, or commit when ready."
            ),
            "warnings": check.errors + check.warnings,
        }

    # ========================================================================
    # connect
    # ========================================================================

    async def connect(
        self,
        session_id: str,
        from_node: str,
        to_node: str,
        from_output: int = 0,
        to_input: int = 0,
    ) -> Dict[str, Any]:
        """Add an explicit edge, validating the source port eagerly."""
        if from_output < 0 or to_input < 0:
            await self._extend_ttl(session_id)
            raise InvalidInput(
                "from_output and to_input must be non-negative",
                {"from_output": from_output, "to_input": to_input},
            )

        def _apply(session: BuilderSession) -> DraftConnection:
            draft = session.draft
            source = draft.get_node(from_node)
            if source is None:
                raise diagnostics.node_not_found("source", from_node, draft)

            expected = self._expected_outputs(source)
            if from_output >= expected:
                raise diagnostics.invalid_output_index(
                    session.session_id, source, to_node, from_output, expected, draft,
                )

            target = draft.get_node(to_node)
            if target is None:
                raise diagnostics.node_not_found("target", to_node, draft)
            if source.id == target.id:
                raise InvalidConnection(
                    "Cannot connect a node to itself", {"node_name": source.name},
                )
            connection = DraftConnection(
                from_node=source.name,
                to_node=target.name,
                from_output=from_output,
                to_input=to_input,
            )
            for existing in draft.get_connections_from(source):
                if (target.matches(existing.to_node)
                        and existing.from_output == from_output
                        and existing.to_input == to_input):
                    raise InvalidConnection(
                        f"Connection from '{source.name}' to '{target.name}' already exists",
                        {"connection": connection.model_dump()},
                    )

            draft.connections.append(connection)
            session.log_operation(
                "connect", **{"from": source.name, "to": target.name, "from_output": from_output},
            )
            return connection

        session, connection = await self._mutate(session_id, _apply)
        get_session_logger(session_id).info(
            f"Connected {connection.from_node}[{connection.from_output}] → {connection.to_node}"
        )
        return {
            "from": connection.from_node,
            "to": connection.to_node,
            "from_output": connection.from_output,
            "to_input": connection.to_input,
            "connections_count": len(session.draft.connections),
        }

    # ========================================================================
    # commit
    # ========================================================================

    async def commit(self, session_id: str, activate: bool = False) -> Dict[str, Any]:
        """Synthesize the draft and create it on the remote service.

        Only success closes the session. On failure the session stays
        active, the attempt is logged as ``commit_failed`` and the raised
        error carries ``retry_count`` and a recovery hint.
        """
        session = await self._load_active(session_id)
        slog = get_session_logger(session_id)

        try:
            payload = self._prepare_commit(session)
            created = await self._submit(payload)
        except BuilderError as e:
            await self._record_commit_failure(session_id, e)
            raise

        workflow_id = str(created.get("id", ""))
        active = bool(created.get("active", False))
        activation_error: Optional[Dict[str, Any]] = None
        if activate and workflow_id:
            try:
                activated = await asyncio.wait_for(
                    self._service.activate_workflow(workflow_id),
                    timeout=self._config.commit_timeout_seconds,
                )
                active = bool(activated.get("active", True))
            except asyncio.TimeoutError:
                activation_error = {"kind": RemoteErrorKind.TRANSIENT.value, "message": "Activation timed out"}
            except WorkflowServiceError as e:
                activation_error = e.to_dict()
            if activation_error:
                slog.warning(f"Workflow {workflow_id} created but not activated: {activation_error['message']}")

        await self._store.delete(session_id)
        slog.info(f"Draft committed as workflow {workflow_id} ({len(payload['nodes'])} nodes)")

        result: Dict[str, Any] = {
            "workflow_id": workflow_id,
            "name": created.get("name", payload["name"]),
            "nodes_count": len(payload["nodes"]),
            "active": active,
            "session_closed": True,
        }
        if activation_error:
            result["activation_error"] = activation_error
        return result

    def _prepare_commit(self, session: BuilderSession) -> Dict[str, Any]:
        draft = session.draft
        if not draft.nodes:
            raise EmptyDraft(
                "Cannot commit empty workflow. Add at least one node first.",
                {"nodes_count": 0},
            )
        if not draft.has_trigger():
            raise MissingTrigger(
                "Workflow must have at least one trigger node",
                {
                    "available_triggers": [
                        s.simplified_type for s in self._catalog.list_by_category(NodeCategory.TRIGGER)
                    ],
                    "current_nodes": [n.type for n in draft.nodes],
                },
            )
        violations = find_arity_violations(draft, self._catalog)
        if violations:
            raise InvalidOutputIndex(
                f"{len(violations)} connection(s) use outputs that no longer exist",
                {"invalid_connections": violations},
            )
        return self._synthesizer.synthesize(draft, session.credentials).to_dict()

    async def _submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        timeout = self._config.commit_timeout_seconds
        try:
            return await asyncio.wait_for(self._service.create_workflow(payload), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RemoteSubmissionFailed(
                f"Workflow service did not answer within {timeout}s",
                {"error_kind": RemoteErrorKind.TRANSIENT.value, "retryable": True},
            ) from e
        except WorkflowServiceError as e:
            raise RemoteSubmissionFailed(
                str(e),
                {
                    "error_kind": e.kind.value,
                    "retryable": e.kind.retryable,
                    "status_code": e.status_code,
                    "remote_hint": e.hint,
                },
            ) from e

    async def _record_commit_failure(self, session_id: str, error: BuilderError) -> None:
        retry_count = 0

        def _apply(session: BuilderSession) -> int:
            prior = session.count_operations("commit_failed")
            session.log_operation(
                "commit_failed", retry_count=prior, error=error.message, code=error.code,
            )
            return prior

        ttl_extended = True
        session_status = SessionStatus.ACTIVE.value
        try:
            _, retry_count = await self._mutate(session_id, _apply)
        except SessionClosed as store_error:
            ttl_extended = False
            session_status = SessionStatus.EXPIRED.value
            logger.warning(f"[{session_id}] Could not record commit failure: {store_error.message}")
        except SessionNotFound as store_error:
            ttl_extended = False
            session_status = "not_found"
            logger.warning(f"[{session_id}] Could not record commit failure: {store_error.message}")
        except BuilderError as store_error:
            ttl_extended = False
            logger.warning(f"[{session_id}] Could not record commit failure: {store_error.message}")

        error.details.update({
            "session_status": session_status,
            "ttl_extended": ttl_extended,
            "retry_count": retry_count,
            "original_error": error.message,
            "recovery_hint": diagnostics.recovery_hint(error.code, retry_count),
        })
        warning = diagnostics.retry_limit_warning(retry_count, self._config.retry_warning_threshold)
        if warning:
            error.details["retry_limit_warning"] = warning

        get_session_logger(session_id).warning(
            f"Commit failed (attempt {retry_count + 1}): {error.code}: {error.message}"
        )

    # ========================================================================
    # discard / list / resume / preview
    # ========================================================================

    async def discard(self, session_id: str) -> Dict[str, Any]:
        """Delete a session. Succeeds even when it does not exist."""
        existed = await self._store.delete(session_id)
        if existed:
            get_session_logger(session_id).info("Draft session discarded")
        return {
            "session_id": session_id,
            "discarded": True,
            "existed": existed,
            "message": "Builder session discarded" if existed else "No such session; nothing to discard",
        }

    async def list_drafts(self, include_expired: bool = True) -> Dict[str, Any]:
        drafts = await self._store.summaries(include_expired)
        return {"drafts": drafts, "total": len(drafts)}

    async def resume(self, session_id: str) -> Dict[str, Any]:
        """Reactivate an archived session under a new id (or extend an active one)."""
        session = await self._store.resume(session_id)
        if session is None:
            raise diagnostics.session_not_found(session_id)
        resumed = session.session_id != session_id
        return {
            "session_id": session.session_id,
            "previous_session_id": session_id,
            "name": session.name,
            "status": session.status.value,
            "expires_at": session.expires_at,
            "nodes_count": len(session.draft.nodes),
            "connections_count": len(session.draft.connections),
            "resumed": resumed,
            "message": (
                f"Session restored as '{session.session_id}'. Use the new id for further calls."
                if resumed
                else "Session was still active; TTL extended."
            ),
        }

    async def preview(self, session_id: str) -> Dict[str, Any]:
        """Validate the draft without committing it."""
        session = await self._load_active(session_id)
        report = inspect_draft(session.draft, session.credentials, self._catalog, self._knowledge)
        report["session_id"] = session_id
        return report

    # ========================================================================
    # Internals
    # ========================================================================

    async def _load_active(self, session_id: str) -> BuilderSession:
        session = await self._store.get(session_id)
        if session is None:
            raise diagnostics.session_not_found(session_id)
        if session.status != SessionStatus.ACTIVE:
            raise diagnostics.session_closed(session)
        return session

    async def _mutate(
        self,
        session_id: str,
        apply: Callable[[BuilderSession], _T],
    ) -> "tuple[BuilderSession, _T]":
        """Load, apply, write back; re-run on version conflicts.

        ``apply`` raises before mutating when the request is invalid. The
        draft is then left as stored and only the TTL is refreshed.
        """
        attempt = 0
        while True:
            attempt += 1
            session = await self._load_active(session_id)
            try:
                result = apply(session)
            except BuilderError:
                await self._extend_ttl(session_id)
                raise
            try:
                return await self._store.update(session), result
            except SessionConflict:
                if attempt >= _MAX_CONFLICT_RETRIES:
                    raise
                logger.debug(f"[{session_id}] Version conflict, retrying ({attempt})")

    async def _extend_ttl(self, session_id: str) -> None:
        """Write back a freshly read copy so a rejected call still keeps the session alive."""
        session = await self._store.get(session_id)
        if session is None or session.status != SessionStatus.ACTIVE:
            return
        try:
            await self._store.update(session)
        except BuilderError as e:
            logger.debug(f"[{session_id}] TTL not extended after rejected call: {e.message}")

    def _expected_outputs(self, node: DraftNode) -> int:
        if node.type in self._catalog:
            return resolve_outputs(node.type, node.parameters, self._catalog).expected_outputs
        return node.expected_outputs

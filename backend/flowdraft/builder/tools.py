"""
Builder Tools — the call/return surface agents use.

Each tool takes a plain dict, validates it with a pydantic request
model before touching the store, and returns either the operation's
result dict or an error dict ``{error, code, details}``. Only
``BuilderError`` is turned into an error dict; anything else is a bug
and propagates.
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from flowdraft.builder.operations import BuilderOperations
from flowdraft.errors import BuilderError, InvalidInput

logger = getLogger(__name__)


# =============================================================================
# Request models
# =============================================================================


class StartRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Workflow name")
    description: Optional[str] = Field(default=None, description="Workflow description")
    credentials: Dict[str, str] = Field(
        default_factory=dict,
        description="Credential name → credential id on the workflow service",
    )


class AddNodeRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="Simplified node type (webhook, http, if, switch ...)")
    name: Optional[str] = Field(default=None, description="Unique node name; generated when omitted")
    action: Optional[str] = Field(default=None, description="Operation for action nodes (e.g. postgres insert)")
    config: Dict[str, Any] = Field(default_factory=dict, description="Node configuration")
    credential: Optional[str] = Field(default=None, description="Credential name from the session")
    position: Optional[List[int]] = Field(
        default=None, min_length=2, max_length=2, description="[x, y]; auto-laid-out when omitted",
    )


class ConnectRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    from_node: str = Field(..., min_length=1, description="Source node name or id")
    to_node: str = Field(..., min_length=1, description="Target node name or id")
    from_output: int = Field(default=0, ge=0, description="Source output port")
    to_input: int = Field(default=0, ge=0, description="Target input port")


class CommitRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    activate: bool = Field(default=False, description="Activate the workflow after creating it")


class SessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


class ListRequest(BaseModel):
    include_expired: bool = Field(default=True, description="Include archived (expired) drafts")


# =============================================================================
# Tool surface
# =============================================================================


_DESCRIPTIONS: Dict[str, str] = {
    "start": "Start a draft workflow session. Returns a session_id for the other builder tools.",
    "add_node": "Add a node to the draft. Position and name are generated when omitted.",
    "connect": "Connect two draft nodes by name or id. from_output selects the branch of if/switch nodes.",
    "commit": "Create the draft on the workflow service. The session is closed only on success.",
    "discard": "Delete a draft session.",
    "list": "List draft sessions, including expired ones that can be resumed.",
    "resume": "Reactivate an expired draft session under a new session_id.",
    "preview": "Validate the draft without committing it.",
}


class BuilderTools:
    """Dict-in / dict-out wrapper around ``BuilderOperations``."""

    def __init__(self, operations: BuilderOperations) -> None:
        self._ops = operations
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "start": self.start,
            "add_node": self.add_node,
            "connect": self.connect,
            "commit": self.commit,
            "discard": self.discard,
            "list": self.list,
            "resume": self.resume,
            "preview": self.preview,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def definitions(self) -> List[Dict[str, Any]]:
        """Tool name, description and JSON schema of its request."""
        models: Dict[str, Type[BaseModel]] = {
            "start": StartRequest,
            "add_node": AddNodeRequest,
            "connect": ConnectRequest,
            "commit": CommitRequest,
            "discard": SessionRequest,
            "list": ListRequest,
            "resume": SessionRequest,
            "preview": SessionRequest,
        }
        return [
            {
                "name": name,
                "description": _DESCRIPTIONS[name],
                "input_schema": models[name].model_json_schema(),
            }
            for name in self._handlers
        ]

    async def call(self, tool: str, args: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(tool)
        if handler is None:
            return InvalidInput(
                f"Unknown builder tool '{tool}'", {"available_tools": self.tool_names},
            ).to_dict()
        return await handler(args or {})

    # ── Tools ──

    async def start(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(StartRequest, args, lambda r: self._ops.start(
            r.name, r.description, r.credentials,
        ))

    async def add_node(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(AddNodeRequest, args, lambda r: self._ops.add_node(
            r.session_id, r.type, name=r.name, action=r.action, config=r.config,
            credential=r.credential, position=r.position,
        ))

    async def connect(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(ConnectRequest, args, lambda r: self._ops.connect(
            r.session_id, r.from_node, r.to_node, r.from_output, r.to_input,
        ))

    async def commit(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(CommitRequest, args, lambda r: self._ops.commit(r.session_id, r.activate))

    async def discard(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(SessionRequest, args, lambda r: self._ops.discard(r.session_id))

    async def list(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(ListRequest, args, lambda r: self._ops.list_drafts(r.include_expired))

    async def resume(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(SessionRequest, args, lambda r: self._ops.resume(r.session_id))

    async def preview(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._run(SessionRequest, args, lambda r: self._ops.preview(r.session_id))

    # ── Internals ──

    async def _run(
        self,
        model: Type[BaseModel],
        args: Mapping[str, Any],
        operation: Callable[[Any], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        try:
            request = model.model_validate(dict(args))
        except ValidationError as e:
            return InvalidInput(
                f"Invalid {model.__name__} input",
                {
                    "errors": [
                        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                        for err in e.errors()
                    ],
                },
            ).to_dict()

        try:
            return await operation(request)
        except BuilderError as e:
            logger.debug(f"Builder tool failed with {e.code}: {e.message}")
            return e.to_dict()

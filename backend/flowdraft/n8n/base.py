"""Workflow service protocol and its failure type."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable


class RemoteErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    AUTH = "auth"
    TRANSIENT = "transient"

    @property
    def retryable(self) -> bool:
        """Only transient failures are worth retrying unchanged."""
        return self == RemoteErrorKind.TRANSIENT


class WorkflowServiceError(Exception):
    """Structured failure from the remote workflow service."""

    def __init__(
        self,
        kind: RemoteErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        path: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.path = path
        self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "path": self.path,
            "hint": self.hint,
        }


@runtime_checkable
class WorkflowService(Protocol):
    """What the builder needs from the remote workflow-automation service."""

    async def create_workflow(self, workflow: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a workflow. Returns the stored workflow (with ``id``)."""
        ...

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        ...

    async def update_workflow(self, workflow_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    async def activate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        ...

    async def deactivate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        ...

    async def delete_workflow(self, workflow_id: str) -> None:
        ...

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...

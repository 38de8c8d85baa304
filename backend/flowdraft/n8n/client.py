"""
n8n Client — async REST adapter for the n8n public API.

Implements the ``WorkflowService`` protocol the builder commits
through, plus the read endpoints (workflows, executions,
credentials) useful when inspecting what was created.

Every failure is raised as ``WorkflowServiceError`` with a ``kind``
(not_found / validation / auth / transient) so the commit path can
tell a retryable hiccup from a draft the service will never accept.
"""

from __future__ import annotations

from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional

import httpx

from flowdraft.config.n8n_config import N8NConfig
from flowdraft.n8n.base import RemoteErrorKind, WorkflowServiceError

logger = getLogger(__name__)

_API_PREFIX = "/api/v1"


def classify_status(status_code: int) -> RemoteErrorKind:
    """Map an HTTP error status onto a ``RemoteErrorKind``."""
    if status_code == 404:
        return RemoteErrorKind.NOT_FOUND
    if status_code in (401, 403):
        return RemoteErrorKind.AUTH
    if status_code == 429 or status_code >= 500:
        return RemoteErrorKind.TRANSIENT
    return RemoteErrorKind.VALIDATION


class N8NClient:
    """Async client for the n8n ``/api/v1`` endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "X-N8N-API-KEY": api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[N8NConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "N8NClient":
        cfg = config or N8NConfig.get_default_instance()
        cfg.validate()
        return cls(cfg.n8n_url, cfg.n8n_api_key, timeout=cfg.timeout_seconds, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "N8NClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ========================================================================
    # Workflows
    # ========================================================================

    async def list_workflows(
        self,
        active: Optional[bool] = None,
        tags: Optional[str] = None,
        name: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = _query(active=active, tags=tags, name=name, limit=limit, cursor=cursor)
        return await self._request("GET", "/workflows", params=params)

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/workflows/{workflow_id}")

    async def create_workflow(self, workflow: Mapping[str, Any]) -> Dict[str, Any]:
        created = await self._request("POST", "/workflows", json=dict(workflow))
        logger.info(f"n8n workflow created: {created.get('name')} ({created.get('id')})")
        return created

    async def update_workflow(self, workflow_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/workflows/{workflow_id}", json=dict(patch))

    async def activate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/workflows/{workflow_id}/activate")

    async def deactivate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/workflows/{workflow_id}/deactivate")

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._request("DELETE", f"/workflows/{workflow_id}")
        logger.info(f"n8n workflow deleted: {workflow_id}")

    # ========================================================================
    # Executions & credentials
    # ========================================================================

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = _query(workflowId=workflow_id, status=status, limit=limit, cursor=cursor)
        return await self._request("GET", "/executions", params=params)

    async def get_execution(self, execution_id: str, include_data: bool = True) -> Dict[str, Any]:
        params = {"includeData": "true" if include_data else "false"}
        return await self._request("GET", f"/executions/{execution_id}", params=params)

    async def list_credentials(self, credential_type: Optional[str] = None) -> List[Dict[str, Any]]:
        result = await self._request("GET", "/credentials", params=_query(type=credential_type))
        if isinstance(result, dict):
            return list(result.get("data", []))
        return list(result or [])

    # ========================================================================
    # Internals
    # ========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = f"{_API_PREFIX}{path}"
        try:
            response = await self._client.request(method, url, json=json, params=params)
        except httpx.TimeoutException as e:
            raise WorkflowServiceError(
                RemoteErrorKind.TRANSIENT,
                f"Request to n8n API timed out after {self._timeout}s",
                path=path,
            ) from e
        except httpx.HTTPError as e:
            raise WorkflowServiceError(
                RemoteErrorKind.TRANSIENT,
                f"Network error: {e}",
                path=path,
            ) from e

        if response.is_error:
            message, hint = _error_message(response)
            kind = classify_status(response.status_code)
            logger.error(f"n8n API {method} {path} failed ({response.status_code}): {message}")
            raise WorkflowServiceError(
                kind,
                f"n8n API error: {message}",
                status_code=response.status_code,
                path=path,
                hint=hint,
            )

        if not response.content:
            return {}
        return response.json()


def _query(**params: Any) -> Dict[str, str]:
    query: Dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        query[key] = str(value).lower() if isinstance(value, bool) else str(value)
    return query


def _error_message(response: httpx.Response) -> "tuple[str, Optional[str]]":
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or response.text or "unknown error", None
    if isinstance(body, dict):
        return str(body.get("message") or response.reason_phrase), body.get("hint")
    return str(body), None

"""Shared test configuration and fakes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

import pytest

from flowdraft.builder.operations import BuilderOperations
from flowdraft.builder.session_store import InMemorySessionStore
from flowdraft.config.builder_config import BuilderConfig
from flowdraft.workflow.draft_model import utcnow


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that need a live Redis server (REDIS_URL).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --run-e2e flag")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or utcnow()

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeWorkflowService:
    """In-memory stand-in for the remote workflow service."""

    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.activated: List[str] = []
        self.failures: List[BaseException] = []
        self.delay: float = 0.0
        self._next_id = 1

    async def create_workflow(self, workflow: Mapping[str, Any]) -> Dict[str, Any]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        workflow_id = f"wf-{self._next_id}"
        self._next_id += 1
        stored = {**workflow, "id": workflow_id, "active": False}
        self.created.append(stored)
        return stored

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return next(w for w in self.created if w["id"] == workflow_id)

    async def update_workflow(self, workflow_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        workflow = await self.get_workflow(workflow_id)
        workflow.update(patch)
        return workflow

    async def activate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        self.activated.append(workflow_id)
        return await self.update_workflow(workflow_id, {"active": True})

    async def deactivate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self.update_workflow(workflow_id, {"active": False})

    async def delete_workflow(self, workflow_id: str) -> None:
        self.created = [w for w in self.created if w["id"] != workflow_id]

    async def list_executions(self, workflow_id: Optional[str] = None, status: Optional[str] = None,
                              limit: Optional[int] = None, cursor: Optional[str] = None) -> Dict[str, Any]:
        return {"data": [], "nextCursor": None}


@pytest.fixture
def builder_config() -> BuilderConfig:
    return BuilderConfig(commit_timeout_seconds=1.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(builder_config: BuilderConfig, clock: FakeClock) -> InMemorySessionStore:
    return InMemorySessionStore(builder_config, clock=clock)


@pytest.fixture
def service() -> FakeWorkflowService:
    return FakeWorkflowService()


@pytest.fixture
def ops(store: InMemorySessionStore, service: FakeWorkflowService) -> BuilderOperations:
    return BuilderOperations(store, service)

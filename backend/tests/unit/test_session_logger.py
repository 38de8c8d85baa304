"""Tests for session-prefixed logging."""

import logging

import pytest

from flowdraft.errors import EmptyDraft
from flowdraft.logging import get_session_logger


def test_messages_carry_session_prefix(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="flowdraft.session"):
        get_session_logger("builder-abc12345").info("Node added: Gate")
    assert caplog.messages == ["[builder-abc12345] Node added: Gate"]


@pytest.mark.asyncio
async def test_commit_failure_logged_as_warning(ops, caplog: pytest.LogCaptureFixture) -> None:
    session_id = (await ops.start("x"))["session_id"]
    with caplog.at_level(logging.WARNING, logger="flowdraft.session"):
        with pytest.raises(EmptyDraft):
            await ops.commit(session_id)
    assert any(
        r.levelno == logging.WARNING and session_id in r.getMessage() for r in caplog.records
    )

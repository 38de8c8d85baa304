"""
Draft Builder — incremental workflow construction across many calls.

Architecture:
    session_store — TTL-governed session persistence (memory / Redis)
    node_factory  — parameters, names and positions for new nodes
    diagnostics   — structured error payloads
    operations    — start / add_node / connect / commit / discard / list / resume / preview
    tools         — dict-in / dict-out surface with request validation
"""

from flowdraft.builder.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
    create_session_store,
)
from flowdraft.builder.operations import BuilderOperations
from flowdraft.builder.tools import BuilderTools

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "create_session_store",
    "BuilderOperations",
    "BuilderTools",
]

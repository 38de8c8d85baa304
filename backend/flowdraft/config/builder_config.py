"""
Builder Configuration.

Controls draft session lifetimes, the archive retention window,
the background sweep interval, auto-layout spacing, commit timeout
and which session store backend is used.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from flowdraft.config.base import BaseConfig, register_config


@register_config
@dataclass
class BuilderConfig(BaseConfig):
    """Draft session engine settings."""

    session_ttl_seconds: int = 30 * 60
    archive_ttl_seconds: int = 24 * 60 * 60
    cleanup_interval_seconds: int = 5 * 60

    # Auto-layout
    node_spacing: int = 180
    start_position: List[int] = field(default_factory=lambda: [100, 200])

    # Commit
    commit_timeout_seconds: float = 30.0
    retry_warning_threshold: int = 5

    # Storage backend: "auto", "memory" or "redis"
    store_type: str = "auto"
    redis_url: str = ""

    _ENV_MAP = {
        "session_ttl_seconds": "FLOWDRAFT_SESSION_TTL",
        "archive_ttl_seconds": "FLOWDRAFT_ARCHIVE_TTL",
        "cleanup_interval_seconds": "FLOWDRAFT_CLEANUP_INTERVAL",
        "node_spacing": "FLOWDRAFT_NODE_SPACING",
        "commit_timeout_seconds": "FLOWDRAFT_COMMIT_TIMEOUT",
        "retry_warning_threshold": "FLOWDRAFT_RETRY_WARNING_THRESHOLD",
        "store_type": "FLOWDRAFT_SESSION_STORE",
        "redis_url": "REDIS_URL",
    }

    @classmethod
    def get_config_name(cls) -> str:
        return "builder"

    @classmethod
    def get_description(cls) -> str:
        return "Draft session TTLs, sweep interval, layout and commit settings."

    @property
    def resolved_store_type(self) -> str:
        """``redis`` only when a Redis URL is configured."""
        if self.store_type == "memory" or not self.redis_url:
            return "memory"
        return "redis"

"""Tests for environment-backed configs."""

import pytest

from flowdraft.config import (
    BuilderConfig,
    N8NConfig,
    get_config_class,
    list_config_names,
    read_env_defaults,
)


def test_builder_defaults() -> None:
    cfg = BuilderConfig()
    assert cfg.session_ttl_seconds == 1800
    assert cfg.archive_ttl_seconds == 86400
    assert cfg.cleanup_interval_seconds == 300
    assert cfg.node_spacing == 180
    assert cfg.start_position == [100, 200]
    assert cfg.retry_warning_threshold == 5
    assert cfg.resolved_store_type == "memory"


def test_builder_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLOWDRAFT_SESSION_TTL", "60")
    monkeypatch.setenv("FLOWDRAFT_COMMIT_TIMEOUT", "2.5")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    cfg = BuilderConfig.get_default_instance()
    assert cfg.session_ttl_seconds == 60
    assert cfg.commit_timeout_seconds == 2.5
    assert cfg.resolved_store_type == "redis"


def test_store_type_can_force_memory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("FLOWDRAFT_SESSION_STORE", "memory")
    assert BuilderConfig.get_default_instance().resolved_store_type == "memory"


def test_invalid_values_fall_back_to_defaults() -> None:
    values = read_env_defaults(
        BuilderConfig._ENV_MAP,
        BuilderConfig.__dataclass_fields__,
        environ={"FLOWDRAFT_NODE_SPACING": "wide", "FLOWDRAFT_CLEANUP_INTERVAL": "10"},
    )
    assert values == {"cleanup_interval_seconds": 10}


def test_n8n_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("N8N_URL", "http://n8n:5678")
    monkeypatch.setenv("N8N_API_KEY", "k")
    cfg = N8NConfig.get_default_instance()
    cfg.validate()
    assert cfg.timeout_seconds == 30.0
    with pytest.raises(ValueError):
        N8NConfig(n8n_url="http://n8n:5678").validate()


def test_registry() -> None:
    assert get_config_class("builder") is BuilderConfig
    assert get_config_class("n8n") is N8NConfig
    assert {"builder", "n8n"} <= set(list_config_names())

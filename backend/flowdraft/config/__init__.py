"""
Configuration Module

Environment-backed dataclass configs for the builder and the n8n client.
"""
from flowdraft.config.base import (
    BaseConfig,
    get_config_class,
    list_config_names,
    read_env_defaults,
    register_config,
)
from flowdraft.config.builder_config import BuilderConfig
from flowdraft.config.n8n_config import N8NConfig

__all__ = [
    'BaseConfig',
    'BuilderConfig',
    'N8NConfig',
    'get_config_class',
    'list_config_names',
    'read_env_defaults',
    'register_config',
]

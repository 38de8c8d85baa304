"""
n8n API Configuration.

Controls the base URL and API key of the remote workflow service,
plus the per-request timeout.
"""

from __future__ import annotations

from dataclasses import dataclass

from flowdraft.config.base import BaseConfig, register_config


@register_config
@dataclass
class N8NConfig(BaseConfig):
    """Remote workflow service connection settings."""

    n8n_url: str = ""
    n8n_api_key: str = ""
    timeout_seconds: float = 30.0

    _ENV_MAP = {
        "n8n_url": "N8N_URL",
        "n8n_api_key": "N8N_API_KEY",
        "timeout_seconds": "N8N_TIMEOUT",
    }

    @classmethod
    def get_config_name(cls) -> str:
        return "n8n"

    @classmethod
    def get_description(cls) -> str:
        return "n8n base URL, API key and request timeout."

    def validate(self) -> None:
        """Raise ``ValueError`` when required settings are missing."""
        if not self.n8n_url:
            raise ValueError("N8N_URL environment variable is required")
        if not self.n8n_api_key:
            raise ValueError("N8N_API_KEY environment variable is required")

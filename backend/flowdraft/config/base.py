"""
Config Base — dataclass configs with environment-variable defaults.

Every concrete config is a ``@dataclass`` subclass of ``BaseConfig``
that declares an ``_ENV_MAP`` (field name → environment variable) and
builds its default instance through ``read_env_defaults``.
Configs register themselves with ``@register_config`` so callers can
look them up by name.
"""

from __future__ import annotations

import dataclasses
import json
import os
from logging import getLogger
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

logger = getLogger(__name__)

_C = TypeVar("_C", bound="BaseConfig")

_CONFIG_REGISTRY: Dict[str, Type["BaseConfig"]] = {}


class BaseConfig:
    """Base class for all config dataclasses."""

    _ENV_MAP: Dict[str, str] = {}

    @classmethod
    def get_default_instance(cls: Type[_C]) -> _C:
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)  # type: ignore[attr-defined]
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        raise NotImplementedError

    @classmethod
    def get_description(cls) -> str:
        return ""

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)  # type: ignore[call-overload]


def register_config(cls: Type[_C]) -> Type[_C]:
    """Class decorator: add a config class to the registry."""
    _CONFIG_REGISTRY[cls.get_config_name()] = cls
    return cls


def get_config_class(name: str) -> Optional[Type[BaseConfig]]:
    return _CONFIG_REGISTRY.get(name)


def list_config_names() -> List[str]:
    return sorted(_CONFIG_REGISTRY)


# ── Environment helpers ──


def read_env_defaults(
    env_map: Mapping[str, str],
    fields: Mapping[str, "dataclasses.Field[Any]"],
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Collect field values from environment variables.

    Only variables that are set are returned; everything else falls back
    to the dataclass default. Values are coerced to the field's declared
    type (``bool``, ``int``, ``float``, ``list`` or ``str``).
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for field_name, env_name in env_map.items():
        raw = env.get(env_name)
        if raw is None or raw == "":
            continue
        fld = fields.get(field_name)
        type_name = str(fld.type) if fld is not None else "str"
        try:
            values[field_name] = _coerce(raw, type_name)
        except ValueError:
            logger.warning(
                f"Ignoring invalid value for {env_name}={raw!r} (expected {type_name})"
            )
    return values


def _coerce(raw: str, type_name: str) -> Any:
    if type_name.startswith("bool"):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if type_name.startswith("int"):
        return int(raw)
    if type_name.startswith("float"):
        return float(raw)
    if type_name.startswith("List") or type_name.startswith("list"):
        parsed = json.loads(raw) if raw.strip().startswith("[") else raw.split(",")
        if not isinstance(parsed, list):
            raise ValueError(raw)
        return parsed
    return raw

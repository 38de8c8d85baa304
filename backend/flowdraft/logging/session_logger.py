"""
Session Logger — ``[session_id]``-prefixed logging for builder sessions.

Builder code logs through ``get_session_logger(session_id)`` so every
line about a draft can be grepped by its session id.
"""

from __future__ import annotations

import logging
import os
from logging import getLogger
from typing import Any, MutableMapping, Optional, Tuple

_LOGGER_NAME = "flowdraft.session"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class SessionLogger(logging.LoggerAdapter):
    """LoggerAdapter that prefixes messages with the session id."""

    def __init__(self, session_id: str, logger: Optional[logging.Logger] = None) -> None:
        super().__init__(logger or getLogger(_LOGGER_NAME), {"session_id": session_id})
        self.session_id = session_id

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.session_id}] {msg}", kwargs


def get_session_logger(session_id: str) -> SessionLogger:
    """Return a logger bound to ``session_id``."""
    return SessionLogger(session_id)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once.

    ``level`` falls back to ``FLOWDRAFT_LOG_LEVEL`` and then ``INFO``.
    """
    name = (level or os.environ.get("FLOWDRAFT_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=_DEFAULT_FORMAT)

"""
Builder Errors — recoverable failures carrying structured diagnostics.

Every error raised by a builder operation is a ``BuilderError`` with a
stable ``code`` and a ``details`` dict the calling agent can act on
(offending entity, valid range, fix suggestion, current state). The
tool surface turns them into error dicts with ``to_dict()``; anything
that is not a ``BuilderError`` is a bug and propagates unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class BuilderError(Exception):
    """Base class for recoverable builder failures."""

    code = "builder_error"

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class InvalidInput(BuilderError):
    """A tool request is missing required fields or has malformed values."""
    code = "invalid_input"


# ── Session lookup ──


class SessionNotFound(BuilderError):
    code = "session_not_found"


class SessionClosed(BuilderError):
    """Session exists only in the archive (expired) or was committed."""
    code = "session_closed"


class SessionConflict(BuilderError):
    """The session document changed between read and write."""
    code = "session_conflict"


# ── Node / connection structure ──


class UnknownNodeType(BuilderError):
    code = "unknown_node_type"


class DuplicateNodeName(BuilderError):
    code = "duplicate_node_name"


class NodeNotFound(BuilderError):
    code = "node_not_found"


class InvalidConnection(BuilderError):
    """Self-connections and duplicate connections."""
    code = "invalid_connection"


class InvalidOutputIndex(BuilderError):
    code = "invalid_output_index"


class UnknownCredential(BuilderError):
    code = "unknown_credential"


# ── Commit ──


class EmptyDraft(BuilderError):
    code = "empty_draft"


class MissingTrigger(BuilderError):
    code = "missing_trigger"


class RemoteSubmissionFailed(BuilderError):
    """The remote service rejected or never answered the submission."""
    code = "remote_submission_failed"

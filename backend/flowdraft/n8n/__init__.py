"""
n8n Adapter — the remote workflow service the builder commits to.
"""

from flowdraft.n8n.base import RemoteErrorKind, WorkflowService, WorkflowServiceError
from flowdraft.n8n.client import N8NClient, classify_status

__all__ = [
    "N8NClient",
    "RemoteErrorKind",
    "WorkflowService",
    "WorkflowServiceError",
    "classify_status",
]

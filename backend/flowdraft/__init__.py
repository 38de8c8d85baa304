"""
flowdraft — build n8n workflows incrementally through draft sessions.

Packages:
    workflow  — node catalog, draft models, graph synthesis, preview
    builder   — session store, operations engine, tool surface
    n8n       — async client for the n8n REST API
    config    — environment-backed dataclass configs
    logging   — session-prefixed logging
"""

__version__ = "0.1.0"

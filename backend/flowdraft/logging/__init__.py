"""
Session Logging Module

Provides per-session logging capabilities for the draft builder.
"""
from flowdraft.logging.session_logger import SessionLogger, get_session_logger, setup_logging

__all__ = ['SessionLogger', 'get_session_logger', 'setup_logging']

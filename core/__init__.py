"""
Core utilities and configuration for the BeakDash quality-check service.

Modules:
    config: Application configuration and environment variable management
    database: Application store connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    secrets: Resolution of connection password references

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import QueryConnectionError, QueryExecutionError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    "resolve_password",
    # Exceptions
    "QAException",
    "AuthenticationRequired",
    "NotFoundOrUnauthorized",
    "UnsupportedConnectionType",
    "QueryAlreadyRunning",
    "ExecutionError",
    "QueryConnectionError",
    "SecretResolutionError",
    "QueryExecutionError",
    "PersistenceError",
    "AlertingError",
]

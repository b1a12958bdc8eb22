"""
Custom exceptions for the quality check pipeline with structured error context.

Each exception carries context information for debugging and monitoring and
declares the HTTP status the API layer maps it to.

Exception Hierarchy:
    QAException (base)
    ├── AuthenticationRequired          (401)
    ├── NotFoundOrUnauthorized          (404)
    ├── UnsupportedConnectionType       (400)
    ├── QueryAlreadyRunning             (409)
    ├── ExecutionError
    │   ├── QueryConnectionError        (recorded as status=error)
    │   │   └── SecretResolutionError
    │   └── QueryExecutionError         (recorded as status=error)
    ├── PersistenceError                (500)
    └── AlertingError                   (logged only)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class QAException(Exception):
    """
    Base exception for all quality-check errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (query id, connection id, ...)
        original_exception: The original exception that was caught (if any)
        status_code: HTTP status the API layer responds with
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Access Errors
# ============================================================================

class AuthenticationRequired(QAException):
    """No authenticated caller identity was supplied."""
    status_code = 401


class NotFoundOrUnauthorized(QAException):
    """
    Raised when a query or connection is missing or not visible to the caller.

    Missing and not-owned produce the same error.

    Context should include:
        - resource: "query", "connection" or "alert"
        - resource_id: The requested id
        - user_id: The acting user
    """
    status_code = 404


class UnsupportedConnectionType(QAException):
    """
    Raised when a connection is not a supported SQL dialect.

    Context should include:
        - connection_id: The connection id
        - connection_type: The stored type
    """
    status_code = 400


class QueryAlreadyRunning(QAException):
    """A run for the same query is already in progress in this process."""
    status_code = 409


# ============================================================================
# Execution Errors
# ============================================================================

class ExecutionError(QAException):
    """Base exception for failures while executing a check against a connection."""
    pass


class QueryConnectionError(ExecutionError):
    """
    Could not establish or authenticate the connection to the external database.

    The message is always prefixed with ``Connection error:``.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(f"Connection error: {message}", context, original_exception)


class SecretResolutionError(QueryConnectionError):
    """
    A connection's password reference could not be resolved.

    Context should include:
        - password_ref: The unresolved reference (never the secret itself)
    """
    pass


class QueryExecutionError(ExecutionError):
    """
    The connection succeeded but the statement failed (syntax error, timeout,
    constraint violation, permission denial).

    The message is always prefixed with ``Query error:``.

    Attributes:
        timed_out: True when the statement exceeded its execution budget
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        timed_out: bool = False
    ):
        super().__init__(f"Query error: {message}", context, original_exception)
        self.timed_out = timed_out
        if timed_out:
            self.context["timed_out"] = True


# ============================================================================
# Infrastructure Errors
# ============================================================================

class PersistenceError(QAException):
    """
    Writing the execution result or the schedule update failed.

    Attributes:
        outcome: The in-memory execution outcome, returned to the caller for
            visibility since the check itself did run
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        outcome: Optional[Any] = None
    ):
        super().__init__(message, context, original_exception)
        self.outcome = outcome


class AlertingError(QAException):
    """
    Failure while loading, evaluating or notifying alert rules.

    Never propagated past the alert evaluator.
    """
    pass

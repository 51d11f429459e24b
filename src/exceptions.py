"""
Standardized exception hierarchy for learnstream
Provides rich context, consistent logging, and user-friendly error messages
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class LearnStreamError(Exception):
    """
    Base exception for all learnstream errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise LearnStreamError(
            message="Failed to update user XP",
            user_id="user-42",
            operation="increment_xp",
            context={"amount": 60}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Action Rejections (expected outcome)
# ==========================================

class ActionRejected(Exception):
    """
    Raised when the rate limiter or anti-cheat validator refuses an action.

    This is an expected, user-facing outcome (HTTP 429). It deliberately does
    not derive from LearnStreamError so it is never logged as an error.
    """

    def __init__(self, result):
        super().__init__(result.reason or "Action rejected")
        self.result = result

    @property
    def reason(self) -> Optional[str]:
        return self.result.reason

    @property
    def cooldown_remaining_ms(self) -> Optional[int]:
        return self.result.cooldown_remaining_ms


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(LearnStreamError):
    """
    Raised when client input fails validation

    Examples:
    - engagementScore outside 0-100
    - Negative watch time
    - Missing required fields

    Example:
        raise ValidationError(
            message="Engagement score must be between 0 and 100",
            field="engagementScore",
            value=140,
            user_id="user-42"
        )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(LearnStreamError):
    """
    Base class for database-related errors
    """
    pass


class ConnectionError(DatabaseError):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={"query": query, **(context or {})},
            **kwargs
        )


class StoreTimeoutError(DatabaseError):
    """A store call or per-user lock did not complete within the configured bound"""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            message=message,
            user_message="The server is busy. Please try again in a moment.",
            context={"timeout_seconds": timeout_seconds},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested database record does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(LearnStreamError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> LearnStreamError:
    """
    Wrap external exceptions (psycopg, asyncio timeouts) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate LearnStreamError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="increment_user_xp",
                user_id="user-42",
                context={"amount": 60}
            )
    """
    import psycopg

    if isinstance(error, LearnStreamError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return StoreTimeoutError(
            message=f"{operation} timed out",
            timeout_seconds=(context or {}).get("timeout_seconds"),
            user_id=user_id,
            operation=operation,
            cause=error
        )

    # Database errors
    if isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    return DatabaseError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )

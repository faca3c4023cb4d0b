"""
Custom exceptions for the content sync engine with structured error context.

This module provides the exception hierarchy used by migration, backup,
restore and synchronization. Each exception carries context information
for debugging and for the run reports.

Exception Hierarchy:
    ContentSyncException (base)
    ├── ConnectionFailure (fatal: abort the whole run)
    │   ├── DatabaseConnectionError
    │   └── PlatformConnectionError
    ├── RecordError (per-record, recoverable)
    │   ├── ValidationError
    │   ├── ConversionError
    │   ├── DuplicateRecordError
    │   └── RecordNotFoundError
    ├── SnapshotError
    │   ├── SnapshotNotFoundError
    │   ├── SnapshotIntegrityError
    │   └── RestoreError
    ├── WebhookSignatureError (security)
    ├── PlatformAPIError
    │   ├── NetworkError / RateLimitError (retryable)
    │   └── AuthenticationError / PlatformValidationError / ResourceNotFoundError
    ├── OperationCancelledError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ContentSyncException(Exception):
    """
    Base exception for all content sync errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (entity, key, operation, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = dict(context or {})
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

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

    def summary(self) -> str:
        """Short message for run reports (no timestamps)."""
        if self.original_exception:
            return f"{self.message}: {self.original_exception}"
        return self.message

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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ContentSyncException):
    """
    Mixin for errors that should be retried with backoff.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ContentSyncException):
    """
    Mixin for errors that should NOT be retried.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid input rejected by the platform
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Connection (fatal) Errors
# ============================================================================

class ConnectionFailure(ContentSyncException):
    """
    One of the two stores cannot be reached. Aborts the entire run.

    Context should include:
        - store: "database" or "platform"
    """
    pass


class DatabaseConnectionError(ConnectionFailure):
    """Local content store is unreachable."""
    pass


class PlatformConnectionError(RetryableError, ConnectionFailure):
    """External platform is unreachable (fatal for migration, queued for sync)."""
    pass


# ============================================================================
# Per-record Errors
# ============================================================================

class RecordError(ContentSyncException):
    """
    Base exception for recoverable, per-record failures.

    Context should include:
        - entity: Entity type (article, tag, series, user)
        - key: Natural key of the record
    """
    pass


class ValidationError(RecordError):
    """
    Exception raised when a record is missing required fields.

    Context should include:
        - field_name: Name of the field that failed validation
        - external_id: External id of the record (if known)
    """
    pass


class ConversionError(RecordError):
    """Exception raised when an external record cannot be converted to the local schema."""
    pass


class DuplicateRecordError(RecordError):
    """A record with the same natural key already exists."""
    pass


class RecordNotFoundError(RecordError):
    """No record exists for the requested natural key."""
    pass


# ============================================================================
# Snapshot Errors
# ============================================================================

class SnapshotError(ContentSyncException):
    """Base exception for snapshot storage failures."""
    pass


class SnapshotNotFoundError(SnapshotError):
    """The requested snapshot does not exist."""
    pass


class SnapshotIntegrityError(SnapshotError):
    """
    Checksum mismatch or unreadable snapshot document.

    Always fatal to a restore attempt and never retried automatically.
    """
    pass


class RestoreError(SnapshotError):
    """The restore transaction failed and was rolled back."""
    pass


# ============================================================================
# Security Errors
# ============================================================================

class WebhookSignatureError(ContentSyncException):
    """Inbound webhook carried an invalid or missing signature."""
    pass


# ============================================================================
# Platform API Errors
# ============================================================================

class PlatformAPIError(ContentSyncException):
    """
    Exception raised when a platform API call fails.

    Context should include:
        - api_url: The API endpoint that failed
        - status_code: HTTP status code (if applicable)
        - operation: GraphQL operation name
        - retry_count: Number of retries attempted
    """
    pass


class NetworkError(RetryableError, PlatformAPIError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, PlatformAPIError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, PlatformAPIError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class PlatformValidationError(NonRetryableError, PlatformAPIError):
    """The platform rejected the request payload."""
    pass


class ResourceNotFoundError(NonRetryableError, PlatformAPIError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


# ============================================================================
# Operation Errors
# ============================================================================

class OperationCancelledError(ContentSyncException):
    """A migration or restore was cancelled cooperatively."""
    pass


def is_retryable(error: BaseException) -> bool:
    """True when the error is transient and belongs in the retry queue."""
    return isinstance(error, RetryableError)

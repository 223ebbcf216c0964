"""
Custom exceptions for the sync pipeline with structured error context.

Each exception carries a context dictionary for debugging and
monitoring, and an optional chained cause.

Exception Hierarchy:
    SyncException (base)
    ├── ProviderAPIError
    │   ├── TransportError (retryable)
    │   │   └── ProviderTimeoutError
    │   └── ApplicationRejectionError (non-retryable)
    │       ├── AuthenticationError
    │       ├── PaymentRequiredError
    │       ├── RateLimitError
    │       └── ResourceNotFoundError
    ├── RequestValidationError
    ├── PersistenceError
    │   ├── UpsertError
    │   └── QueueClaimError
    ├── AggregationError
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all sync-related errors.
    
    Attributes:
        message: Human-readable error message
        context: Additional context information (provider, endpoint, dates, etc.)
        original_exception: The original exception that was caught (if any)
    """
    
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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.
    
    Use this for transient errors like:
    - Network timeouts
    - Connection resets
    - Service unavailable (HTTP 5xx)
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.
    
    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Rate limiting or quota rejections (HTTP 402, 429)
    - Invalid request parameters
    """
    pass


# ============================================================================
# Provider API Errors
# ============================================================================

class ProviderAPIError(SyncException):
    """
    Exception raised when a provider API call fails.
    
    Context should include:
        - provider: Provider name
        - endpoint: Endpoint name
        - url: Request URL (without credentials)
        - retry_count: Number of retries attempted
    """
    
    is_transport = False
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class TransportError(RetryableError, ProviderAPIError):
    """Timeouts, connection failures and 5xx responses."""
    
    is_transport = True


class ProviderTimeoutError(TransportError):
    """Request exceeded its timeout."""
    pass


class ApplicationRejectionError(NonRetryableError, ProviderAPIError):
    """4xx responses from the provider."""
    pass


class AuthenticationError(ApplicationRejectionError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class PaymentRequiredError(ApplicationRejectionError):
    """Provider quota or subscription rejection (HTTP 402)."""
    pass


class RateLimitError(ApplicationRejectionError):
    """Rate limiting rejection (HTTP 429)."""
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = 429,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception, status_code=status_code)
        self.retry_after = retry_after  # Seconds the provider asked us to wait
        if retry_after:
            self.context["retry_after"] = retry_after


class ResourceNotFoundError(ApplicationRejectionError):
    """Unknown endpoint or resource (HTTP 404)."""
    pass


# ============================================================================
# Validation Errors
# ============================================================================

class RequestValidationError(NonRetryableError):
    """
    Exception raised when a request is rejected before any I/O.
    
    Context should include:
        - field_name: Name of the offending field
        - field_value: Value that failed validation
        - validation_rule: The rule that was violated
    """
    pass


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistenceError(SyncException):
    """
    Exception raised when datastore operations fail.
    
    Context should include:
        - operation: Type of database operation (SELECT, UPSERT, UPDATE)
        - table_name: Name of the table
    """
    pass


class UpsertError(PersistenceError):
    """
    Exception raised when a batch upsert fails.
    
    Context should include:
        - table_name: Destination table
        - batch_index: Index of the failed batch
        - batch_size: Number of records in the batch
    """
    pass


class QueueClaimError(PersistenceError):
    """Backfill queue item could not be claimed or resolved."""
    pass


# ============================================================================
# Aggregation / Configuration Errors
# ============================================================================

class AggregationError(SyncException):
    """
    Exception raised when aggregation cannot proceed.
    
    Context should include:
        - endpoint: Endpoint being aggregated
        - start_date / end_date: Requested range
        - group_key: Grouping key (for per-group failures)
    """
    pass


class ConfigurationError(NonRetryableError):
    """Missing credentials, unknown provider or unknown endpoint."""
    pass

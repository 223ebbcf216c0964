"""
Core utilities and configuration for the sync pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database connection, session management and upsert helper
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities
    resilience: Retry policy and rate limiter used by clients and loaders

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import ProviderAPIError, TransportError
    from core.logging import setup_logging
    from core.resilience import RetryPolicy, RateLimiter
"""

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    "RetryPolicy",
    "RateLimiter",
    # Exceptions
    "SyncException",
    "ProviderAPIError",
    "TransportError",
    "ProviderTimeoutError",
    "ApplicationRejectionError",
    "AuthenticationError",
    "PaymentRequiredError",
    "RateLimitError",
    "ResourceNotFoundError",
    "RequestValidationError",
    "PersistenceError",
    "UpsertError",
    "QueueClaimError",
    "AggregationError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]

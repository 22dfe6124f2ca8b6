"""IoT Hub service API modules.

This package provides the authenticated HTTP client used by the registry
adapter, along with the supporting token, resilience and error layers.

Classes:
    RegistryClient: Async HTTP client with retry and circuit breaker
    SasTokenManager: Shared access signature generation with caching
    ConnectionString: Parsed service connection string

Exceptions:
    HubMigrateError: Base exception for all migration errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationError: Authentication failures
    APIError: API request failures
    NetworkError: Network connectivity issues
    MigrationError: Export/import workflow failures

Resilience:
    CircuitBreaker: Prevent cascading failures
"""
from .auth import CachedToken, ConnectionString, SasTokenManager, generate_sas_token
from .client import DEFAULT_API_VERSION, RegistryClient
from .error_sanitizer import ErrorSanitizer, get_sanitizer, sanitize_error_message
from .exceptions import (
    FATAL_REGISTRY_ERRORS,
    APIError,
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    HubMigrateError,
    InvalidCredentialsError,
    MigrationError,
    NetworkError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitError,
    ServerError,
    SnapshotFileError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)
from .resilience import CircuitBreaker, CircuitState

__all__ = [
    # Auth
    "CachedToken",
    "ConnectionString",
    "SasTokenManager",
    "generate_sas_token",
    # Client
    "DEFAULT_API_VERSION",
    "RegistryClient",
    # Sanitizer
    "ErrorSanitizer",
    "get_sanitizer",
    "sanitize_error_message",
    # Exceptions
    "FATAL_REGISTRY_ERRORS",
    "APIError",
    "AuthenticationError",
    "CircuitOpenError",
    "ConfigurationError",
    "ConflictError",
    "ConnectionError",
    "HubMigrateError",
    "InvalidCredentialsError",
    "MigrationError",
    "NetworkError",
    "NotFoundError",
    "PreconditionFailedError",
    "RateLimitError",
    "ServerError",
    "SnapshotFileError",
    "TimeoutError",
    "TokenExpiredError",
    "ValidationError",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
]

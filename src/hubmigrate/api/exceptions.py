#!/usr/bin/env python3
"""Errors raised by the registry client and the migration engine.

Exception Hierarchy:
    HubMigrateError (base)
    ├── ConfigurationError        bad connection string / settings
    ├── AuthenticationError
    │   ├── TokenExpiredError     401, token is regenerated and retried
    │   └── InvalidCredentialsError
    ├── APIError                  non-2xx response
    │   ├── RateLimitError        429
    │   ├── NotFoundError         404
    │   ├── ValidationError       400
    │   ├── ConflictError         409
    │   ├── PreconditionFailedError  412
    │   └── ServerError           5xx
    ├── NetworkError
    │   ├── ConnectionError
    │   └── TimeoutError
    └── MigrationError
        ├── SnapshotFileError
        └── CircuitOpenError

FATAL_REGISTRY_ERRORS lists the errors after which talking to the registry
is pointless; the export and import loops stop on them instead of counting
one failure per entity.
"""
from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class HubMigrateError(Exception):
    """Base exception for the package.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NOT_FOUND")
        details: Extra context rendered after the message
        cause: The exception this one wraps, if any
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.cause = cause

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.details:
            text += " (" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")"
        return text


class ConfigurationError(HubMigrateError):
    """Settings or connection string are unusable; nothing to retry."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, code="CONFIGURATION_ERROR", details=details, **kwargs)


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(HubMigrateError):
    """Base class for SAS authentication failures."""


class TokenExpiredError(AuthenticationError):
    """The hub answered 401 to a signed request."""

    def __init__(self, message: str = "SAS token has expired", **kwargs):
        super().__init__(message, code="TOKEN_EXPIRED", **kwargs)


class InvalidCredentialsError(AuthenticationError):
    """A freshly signed token was still rejected."""

    def __init__(self, message: str = "Invalid shared access credentials", **kwargs):
        super().__init__(message, code="INVALID_CREDENTIALS", **kwargs)


# ============================================
# API Errors
# ============================================

class APIError(HubMigrateError):
    """Non-success HTTP response from the registry.

    Attributes:
        status_code: HTTP status code
        endpoint: Request path
        method: HTTP method
    """

    MAX_BODY_IN_DETAILS = 500

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = f"{method} {endpoint}"
        if response_body:
            details["response_body"] = response_body[:self.MAX_BODY_IN_DETAILS]
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code
        self.endpoint = endpoint
        self.method = method


class RateLimitError(APIError):
    """Throttled by the hub (HTTP 429).

    Attributes:
        retry_after: Seconds to wait, from Retry-After (10 when absent)
    """

    DEFAULT_RETRY_AFTER = 10

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, code="RATE_LIMIT_EXCEEDED", **kwargs)
        self.retry_after = retry_after or self.DEFAULT_RETRY_AFTER


class NotFoundError(APIError):
    """Device, module or twin does not exist (HTTP 404)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} '{resource_id}' not found" if resource_id else f"{resource_type} not found"
        kwargs.setdefault("status_code", 404)
        super().__init__(message, code="NOT_FOUND", **kwargs)


class ValidationError(APIError):
    """Request body rejected (HTTP 400)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("status_code", 400)
        super().__init__(message, code="VALIDATION_ERROR", **kwargs)


class ConflictError(APIError):
    """Identity already exists (HTTP 409)."""

    def __init__(self, message: str = "Resource already exists", **kwargs):
        kwargs.setdefault("status_code", 409)
        super().__init__(message, code="CONFLICT", **kwargs)


class PreconditionFailedError(APIError):
    """If-Match etag no longer matches (HTTP 412)."""

    def __init__(self, message: str = "ETag precondition failed", **kwargs):
        kwargs.setdefault("status_code", 412)
        super().__init__(message, code="PRECONDITION_FAILED", **kwargs)


class ServerError(APIError):
    """5xx response; retried with backoff by the client."""

    def __init__(self, message: str = "Server error", **kwargs):
        kwargs.setdefault("status_code", 500)
        super().__init__(message, code="SERVER_ERROR", **kwargs)


# ============================================
# Network Errors
# ============================================

class NetworkError(HubMigrateError):
    """Transport-level failure; retried with backoff by the client."""


class ConnectionError(NetworkError):
    """The hub host could not be reached."""

    def __init__(self, message: str = "Failed to connect to server", **kwargs):
        super().__init__(message, code="CONNECTION_ERROR", **kwargs)


class TimeoutError(NetworkError):
    """A request exceeded the client timeout."""

    def __init__(self, message: str = "Request timed out", **kwargs):
        super().__init__(message, code="TIMEOUT_ERROR", **kwargs)


# ============================================
# Migration Errors
# ============================================

class MigrationError(HubMigrateError):
    """Base class for export/import workflow errors."""


class SnapshotFileError(MigrationError):
    """The snapshot file cannot be read or written.

    Attributes:
        path: Path of the snapshot file
    """

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if path:
            details["path"] = path
        super().__init__(message, code="SNAPSHOT_FILE_ERROR", details=details, **kwargs)
        self.path = path


class CircuitOpenError(MigrationError):
    """The circuit breaker is rejecting calls.

    Attributes:
        reset_at: When a trial call will be let through
        failure_count: Consecutive failures that opened the circuit
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count
        super().__init__(message, code="CIRCUIT_OPEN", details=details, **kwargs)
        self.reset_at = reset_at
        self.failure_count = failure_count


FATAL_REGISTRY_ERRORS = (
    ConfigurationError,
    ConnectionError,
    InvalidCredentialsError,
    CircuitOpenError,
)


__all__ = [
    "HubMigrateError",
    "ConfigurationError",
    "AuthenticationError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    "APIError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "PreconditionFailedError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "MigrationError",
    "SnapshotFileError",
    "CircuitOpenError",
    "FATAL_REGISTRY_ERRORS",
]

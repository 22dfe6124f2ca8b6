#!/usr/bin/env python3
"""Generic HTTP Client for the Azure IoT Hub service REST API.

This module provides a reusable HTTP client that handles the common concerns
of talking to an IoT Hub registry:

    - SAS authentication via SasTokenManager
    - Token regeneration on 401 responses
    - Throttling (429) handling that honours Retry-After
    - Exponential backoff on 5xx and network errors
    - Connection pooling via a shared aiohttp session
    - Circuit breaker for resilience against hub outages
    - Typed exceptions for every failure class

Design Philosophy:
    This client knows HOW to talk to IoT Hub, but not WHAT to fetch.
    It has no knowledge of devices, modules or twins. That knowledge
    belongs in the IoTHubRegistry adapter that composes this client.

Usage:
    async with RegistryClient(token_manager) as client:
        devices = await client.get("/devices", params={"top": 1000})
        twin = await client.patch("/twins/dev-001", patch, headers={"If-Match": "*"})
"""
import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from .auth import SasTokenManager
from .exceptions import (
    APIError,
    ConflictError,
    ConnectionError,
    InvalidCredentialsError,
    NetworkError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TokenExpiredError,
    ValidationError,
)
from .resilience import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2021-04-12"
REQUEST_TIMEOUT_SECONDS = 60


class RegistryClient:
    """Async HTTP client for the IoT Hub service API.

    This client is designed to be used as an async context manager to ensure
    proper session lifecycle management:

        async with RegistryClient(token_manager) as client:
            data = await client.get("/devices/dev-001")

    Attributes:
        token_manager: SasTokenManager producing Authorization headers
        base_url: Base URL for API requests (e.g., "https://contoso.azure-devices.net")
        api_version: Value sent as the api-version query parameter
    """

    def __init__(
        self,
        token_manager: SasTokenManager,
        base_url: Optional[str] = None,
        api_version: str = DEFAULT_API_VERSION,
        max_retries: int = 3,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_timeout: float = 60.0,
    ):
        """Initialize the RegistryClient.

        Args:
            token_manager: SasTokenManager for authentication
            base_url: API base URL. Defaults to https://<HostName from connection string>.
            api_version: IoT Hub REST api-version
            max_retries: Attempts per request before giving up
            enable_circuit_breaker: Enable circuit breaker for resilience
            circuit_failure_threshold: Failures before circuit opens
            circuit_timeout: Seconds before circuit attempts to close
        """
        self.token_manager = token_manager
        self.base_url = (base_url or f"https://{token_manager.host_name}").rstrip("/")
        self.api_version = api_version
        self.max_retries = max_retries

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

        self._circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self._circuit_breaker = CircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout=circuit_timeout,
                name="iothub_registry",
            )

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context: create the HTTP session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=4, limit_per_host=4),
            timeout=aiohttp.ClientTimeout(
                total=REQUEST_TIMEOUT_SECONDS,
                connect=10,
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    def _get_headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {
            "Authorization": self.token_manager.get_token(),
            "Content-Type": "application/json; charset=utf-8",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make a single HTTP request (no retry logic).

        Returns:
            Parsed JSON response ({} for an empty body)

        Raises:
            APIError: If response status is not 2xx
            RuntimeError: If called outside of async context manager
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
        """
        if not self._session:
            raise RuntimeError(
                "RegistryClient must be used as async context manager: "
                "async with RegistryClient(...) as client:"
            )

        url = f"{self.base_url}{endpoint}"
        query = {"api-version": self.api_version}
        if params:
            query.update(params)

        try:
            async with self._session.request(
                method=method,
                url=url,
                headers=self._get_headers(headers),
                params=query,
                json=json_body,
            ) as response:
                text = await response.text()

                if response.status >= 400:
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=endpoint,
                        response_body=text,
                        retry_after=response.headers.get("Retry-After"),
                    )

                return json.loads(text) if text else {}

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(f"Failed to connect to {self.base_url}", cause=e)

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Request to {endpoint} timed out after {REQUEST_TIMEOUT_SECONDS}s",
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {endpoint}: {e}",
                cause=e,
            )

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
        retry_after: Optional[str] = None,
    ) -> APIError | TokenExpiredError:
        """Create appropriate exception based on status code."""
        if status == 401:
            return TokenExpiredError(
                "SAS token expired or invalid",
                details={"endpoint": endpoint},
            )

        if status == 404:
            return NotFoundError(
                resource_type="Resource",
                resource_id=endpoint,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 409:
            return ConflictError(
                f"Conflict for {method} {endpoint}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 412:
            return PreconditionFailedError(
                f"ETag mismatch for {method} {endpoint}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 429:
            try:
                seconds = int(retry_after) if retry_after else None
            except ValueError:
                seconds = None
            return RateLimitError(
                f"Rate limit exceeded for {endpoint}",
                retry_after=seconds,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 400:
            return ValidationError(
                f"Validation failed for {method} {endpoint}",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status >= 500:
            return ServerError(
                f"Server error ({status}) for {method} {endpoint}",
                status_code=status,
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"{method} {endpoint} failed",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make an HTTP request with automatic retry and circuit breaker.

        This method wraps _request() with resilience logic:
            - Circuit breaker: Fail fast if the hub is down
            - 401 Unauthorized: Regenerate token, retry
            - 429 Throttled: Wait for Retry-After, retry
            - 5xx Server Errors: Exponential backoff retry
            - Network errors: Exponential backoff retry

        Raises:
            CircuitOpenError: If circuit breaker is open
            InvalidCredentialsError: If every attempt was rejected with 401
            APIError: If request fails after all retries
            NetworkError: If network error persists after retries
        """
        if self._circuit_breaker:
            await self._circuit_breaker.before_call()

        last_error: Optional[Exception] = None
        backoff_delay = 1.0

        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._request(method, endpoint, params, json_body, headers)

                if self._circuit_breaker:
                    await self._circuit_breaker.record_success()

                return result

            except TokenExpiredError as e:
                last_error = e
                logger.warning(f"SAS token rejected, regenerating (attempt {attempt})")
                self.token_manager.invalidate()
                continue

            except RateLimitError as e:
                last_error = e
                if attempt < self.max_retries:
                    logger.warning(
                        f"Throttled, waiting {e.retry_after}s (attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(e.retry_after)
                    continue
                raise

            except ServerError as e:
                last_error = e
                if attempt < self.max_retries:
                    logger.warning(
                        f"Server error {e.status_code}, retrying in {backoff_delay}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(backoff_delay)
                    backoff_delay = min(backoff_delay * 2, 60.0)
                    continue

                if self._circuit_breaker:
                    await self._circuit_breaker.record_failure(e)
                raise

            except NetworkError as e:
                last_error = e
                if attempt < self.max_retries:
                    logger.warning(
                        f"Network error: {e}. Retrying in {backoff_delay}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    await asyncio.sleep(backoff_delay)
                    backoff_delay = min(backoff_delay * 2, 60.0)
                    continue

                if self._circuit_breaker:
                    await self._circuit_breaker.record_failure(e)
                raise

        if isinstance(last_error, TokenExpiredError):
            error = InvalidCredentialsError(
                f"Hub rejected credentials for {method} {endpoint} "
                f"after {self.max_retries} attempts",
                cause=last_error,
            )
            if self._circuit_breaker:
                await self._circuit_breaker.record_failure(error)
            raise error

        if last_error:
            raise last_error

        raise APIError(
            "Request failed after all retries",
            status_code=0,
            endpoint=endpoint,
            method=method,
        )

    @property
    def circuit_status(self) -> Optional[dict[str, Any]]:
        """Get circuit breaker status for monitoring."""
        if self._circuit_breaker:
            return self._circuit_breaker.get_status()
        return None

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> Any:
        """Make a GET request."""
        return await self._request_with_retry("GET", endpoint, params=params)

    async def put(
        self,
        endpoint: str,
        json_body: Any,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make a PUT request (create or replace an identity)."""
        return await self._request_with_retry(
            "PUT", endpoint, json_body=json_body, headers=headers
        )

    async def patch(
        self,
        endpoint: str,
        json_body: Any,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make a PATCH request (partial twin update)."""
        return await self._request_with_retry(
            "PATCH", endpoint, json_body=json_body, headers=headers
        )


__all__ = [
    "DEFAULT_API_VERSION",
    "RegistryClient",
]

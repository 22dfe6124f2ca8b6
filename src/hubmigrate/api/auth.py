#!/usr/bin/env python3
"""Shared Access Signature authentication for the IoT Hub service API.

This module turns an IoT Hub service connection string into the SAS tokens
the registry REST API expects in its Authorization header.

Features:
    - Connection string parsing with typed configuration errors
    - HMAC-SHA256 token signing against the hub host name
    - Token caching with a refresh buffer (10% of TTL, max 5min)
    - Explicit invalidation on 401 responses

Security Notes:
    - Tokens and keys are cached in memory only (never persisted to disk)
    - Token ID in debug output uses SHA-256 hash (first 8 chars) - never shows actual token

Example:
    >>> conn = ConnectionString.parse(os.environ["IOTHUB_SOURCE_CONNECTION_STRING"])
    >>> manager = SasTokenManager(conn)
    >>> token = manager.get_token()
"""
import base64
import binascii
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote_plus

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 3600


@dataclass(frozen=True)
class ConnectionString:
    """Parsed IoT Hub service connection string.

    Attributes:
        host_name: Hub host, e.g. "contoso.azure-devices.net"
        shared_access_key_name: Shared access policy name (e.g. "iothubowner")
        shared_access_key: Base64-encoded policy key
    """
    host_name: str
    shared_access_key_name: str
    shared_access_key: str

    REQUIRED_KEYS = ("HostName", "SharedAccessKeyName", "SharedAccessKey")

    @classmethod
    def parse(cls, value: Optional[str]) -> "ConnectionString":
        """Parse a "HostName=...;SharedAccessKeyName=...;SharedAccessKey=..." string.

        Raises:
            ConfigurationError: If the string is empty, a required part is missing,
                or the key is not base64.
        """
        if not value or not value.strip():
            raise ConfigurationError("Connection string cannot be empty")

        parts: dict[str, str] = {}
        for segment in value.strip().split(";"):
            if not segment:
                continue
            # Keys are base64 and may end with "=", so split on the first one only
            key, sep, val = segment.partition("=")
            if not sep:
                raise ConfigurationError(
                    f"Malformed connection string segment: {key!r}",
                )
            parts[key.strip()] = val.strip()

        missing = [k for k in cls.REQUIRED_KEYS if not parts.get(k)]
        if missing:
            raise ConfigurationError(
                f"Connection string is missing: {', '.join(missing)}",
                missing_keys=missing,
            )

        try:
            base64.b64decode(parts["SharedAccessKey"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError("SharedAccessKey is not valid base64", cause=e)

        return cls(
            host_name=parts["HostName"],
            shared_access_key_name=parts["SharedAccessKeyName"],
            shared_access_key=parts["SharedAccessKey"],
        )

    def __repr__(self) -> str:
        # Never expose the key through repr()
        return (
            f"ConnectionString(host_name={self.host_name!r}, "
            f"shared_access_key_name={self.shared_access_key_name!r})"
        )


@dataclass
class CachedToken:
    """Container for a generated SAS token.

    Attributes:
        token: The full "SharedAccessSignature ..." header value.
        expires_at: Unix timestamp when the token expires.
        expires_in: Original TTL in seconds (for dynamic buffer calculation).
    """
    token: str
    expires_at: float
    expires_in: int = DEFAULT_TOKEN_TTL_SECONDS

    MAX_BUFFER_SECONDS = 300
    MIN_BUFFER_SECONDS = 30

    @property
    def token_id(self) -> str:
        """Get a safe identifier for logging (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.token.encode()).hexdigest()[:8]

    @property
    def _buffer_seconds(self) -> float:
        base_buffer = self.expires_in * 0.1
        return max(self.MIN_BUFFER_SECONDS, min(base_buffer, self.MAX_BUFFER_SECONDS))

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired (with safety buffer)."""
        return time.time() >= (self.expires_at - self._buffer_seconds)

    @property
    def time_remaining(self) -> float:
        """Return seconds remaining before token expires (0 if expired)."""
        return max(0, self.expires_at - time.time())


def generate_sas_token(
    resource_uri: str,
    key: str,
    policy_name: Optional[str],
    expiry: int,
) -> str:
    """Sign a SAS token for resource_uri that is valid until expiry.

    Raises:
        ConfigurationError: If the key is not valid base64.
    """
    encoded_uri = quote_plus(resource_uri)
    to_sign = f"{encoded_uri}\n{expiry}".encode("utf-8")

    try:
        decoded_key = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(
            "SharedAccessKey is not valid base64",
            cause=e,
        )

    signature = base64.b64encode(
        hmac.new(decoded_key, to_sign, hashlib.sha256).digest()
    ).decode("utf-8")

    token = (
        f"SharedAccessSignature sr={encoded_uri}"
        f"&sig={quote_plus(signature)}&se={expiry}"
    )
    if policy_name:
        token += f"&skn={policy_name}"
    return token


class SasTokenManager:
    """SAS token manager with caching and explicit invalidation.

    Generates tokens scoped to the hub host from the connection string's
    shared access policy. Tokens are cached and regenerated shortly before
    expiry, or immediately after invalidate() is called on a 401.

    Example:
        >>> manager = SasTokenManager(ConnectionString.parse(cs))
        >>> manager.get_token()  # Generates a new token
        >>> manager.get_token()  # Returns cached token
    """

    def __init__(
        self,
        connection_string: ConnectionString,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        self.connection_string = connection_string
        self.ttl_seconds = ttl_seconds
        self._cached_token: Optional[CachedToken] = None

    @property
    def host_name(self) -> str:
        return self.connection_string.host_name

    def get_token(self) -> str:
        """Get a valid SAS token, generating a fresh one as needed."""
        if self._cached_token and not self._cached_token.is_expired:
            return self._cached_token.token

        expiry = int(time.time() + self.ttl_seconds)
        token = generate_sas_token(
            self.connection_string.host_name,
            self.connection_string.shared_access_key,
            self.connection_string.shared_access_key_name,
            expiry,
        )
        self._cached_token = CachedToken(
            token=token,
            expires_at=expiry,
            expires_in=self.ttl_seconds,
        )
        logger.debug(
            f"SAS token generated (id={self._cached_token.token_id}) "
            f"for {self.host_name}, expires in {self.ttl_seconds}s"
        )
        return token

    def invalidate(self):
        """Invalidate the cached token."""
        self._cached_token = None

    @property
    def token_info(self) -> Optional[dict]:
        """Get info about the current cached token for debugging.

        Security: Uses token_id (SHA-256 hash) instead of actual token content.
        """
        if not self._cached_token:
            return None
        return {
            "token_id": self._cached_token.token_id,
            "is_expired": self._cached_token.is_expired,
            "time_remaining_seconds": self._cached_token.time_remaining,
            "expires_in_original": self._cached_token.expires_in,
        }

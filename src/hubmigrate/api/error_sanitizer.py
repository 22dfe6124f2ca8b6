"""
Error Message Sanitization for migration logs and reports.

A migration moves symmetric keys between hubs, and the registry echoes request
bodies back in some error responses. Every per-entity error message that is
logged or stored in a report passes through this module so that connection
strings, SAS tokens and device keys never end up on disk or in a terminal.

Usage:
    from src.hubmigrate.api.error_sanitizer import sanitize_error_message

    try:
        await registry.create_device(identity)
    except Exception as e:
        logger.error(f"Error processing device {device_id}: {sanitize_error_message(str(e))}")

What Gets Sanitized
-------------------
1. Connection strings: HostName=...;SharedAccessKey=... → [CONNECTION_STRING]
2. SAS tokens: SharedAccessSignature sr=...&sig=... → [SAS_TOKEN]
3. Key material: SharedAccessKey=abc, "primaryKey": "abc" → [REDACTED]
4. Long base64 strings (40+ chars) → [BASE64_REDACTED]
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class SanitizationResult:
    """Result of error message sanitization.

    Attributes:
        sanitized_message: Sanitized error message (safe to log)
        redaction_count: Number of redactions made
    """

    sanitized_message: str
    redaction_count: int

    @property
    def was_sanitized(self) -> bool:
        """Check if any redactions were made."""
        return self.redaction_count > 0


class ErrorSanitizer:
    """Sanitizer for error messages produced while talking to a registry.

    Attributes:
        patterns: List of (regex_pattern, replacement) tuples
        max_message_length: Maximum length of sanitized messages
    """

    # Order matters - more specific patterns should come first
    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        # Full connection strings
        (r'HostName=[^\s;]+;[^\s]*SharedAccessKey=[^\s;]+', '[CONNECTION_STRING]'),

        # SAS tokens in headers or messages
        (r'SharedAccessSignature\s+[^\s,]+', '[SAS_TOKEN]'),
        (r'\bsig=[^\s&,;]+', 'sig=[REDACTED]'),

        # Key material
        (r'SharedAccessKey=[^\s;,]+', 'SharedAccessKey=[REDACTED]'),
        (r'"(primaryKey|secondaryKey)"\s*:\s*"[^"]*"', r'"\1": "[REDACTED]"'),
        (r'\b(primary|secondary)[-_]?key[=:\s]+[^\s,;]+', r'\1_key=[REDACTED]'),

        # Authorization headers
        (r'authorization[:\s]+[^\s\n]+', 'Authorization: [REDACTED]'),

        # Long base64 strings (likely keys)
        (r'\b[A-Za-z0-9+/]{40,}={0,2}', '[BASE64_REDACTED]'),
    ]

    def __init__(
        self,
        patterns: Optional[list[tuple[str, str]]] = None,
        max_message_length: int = 500,
    ):
        self.patterns = list(patterns or self.DEFAULT_PATTERNS)
        self.max_message_length = max_message_length
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in self.patterns
        ]

    def sanitize(self, message: str, error_type: Optional[str] = None) -> SanitizationResult:
        """Sanitize an error message.

        Args:
            message: Raw error message
            error_type: Optional error type/category used as a prefix

        Returns:
            SanitizationResult with sanitized message
        """
        if not message:
            return SanitizationResult(
                sanitized_message="An error occurred",
                redaction_count=0,
            )

        sanitized = message
        redaction_count = 0

        for pattern, replacement in self._compiled_patterns:
            sanitized, matches = pattern.subn(replacement, sanitized)
            redaction_count += matches

        if len(sanitized) > self.max_message_length:
            sanitized = sanitized[: self.max_message_length] + "... [TRUNCATED]"

        if error_type and not sanitized.startswith(error_type):
            sanitized = f"{error_type}: {sanitized}"

        return SanitizationResult(
            sanitized_message=sanitized,
            redaction_count=redaction_count,
        )

    def add_pattern(self, pattern: str, replacement: str) -> None:
        """Add a custom sanitization pattern."""
        self.patterns.append((pattern, replacement))
        self._compiled_patterns.append(
            (re.compile(pattern, re.IGNORECASE), replacement)
        )

    def is_safe(self, message: str) -> bool:
        """Check if message contains nothing that would be sanitized."""
        return not any(pattern.search(message) for pattern, _ in self._compiled_patterns)


_default_sanitizer: Optional[ErrorSanitizer] = None


def get_sanitizer() -> ErrorSanitizer:
    """Get the default error sanitizer instance."""
    global _default_sanitizer
    if _default_sanitizer is None:
        _default_sanitizer = ErrorSanitizer()
    return _default_sanitizer


def sanitize_error_message(
    message: str,
    error_type: Optional[str] = None,
) -> str:
    """Convenience function to sanitize error messages.

    Example:
        >>> sanitize_error_message("rejected SharedAccessKey=abc123;")
        'rejected SharedAccessKey=[REDACTED];'
    """
    return get_sanitizer().sanitize(message, error_type).sanitized_message

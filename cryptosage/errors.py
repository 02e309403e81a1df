"""
Exception classes for CryptoSage.

Every failure here is local and recoverable: the UI shows the message and
offers a retry, or the next scheduled refresh tries again.
"""

from __future__ import annotations

from typing import Any, Optional


class SageError(Exception):
    """Base class for all CryptoSage errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class FetchError(SageError):
    """A market-data request could not produce a usable payload."""


class TransportError(FetchError):
    """
    Connection failure, timeout or an error HTTP status.

    status_code is None when the request never got a response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs: Any) -> None:
        details = dict(kwargs)
        if status_code is not None:
            details['status_code'] = status_code
        super().__init__(message, details)
        self.status_code = status_code


class DecodeError(FetchError):
    """Response body missing or not in the expected shape."""


class StorageError(SageError):
    """Persisted state could not be read or written."""


class SchemaVersionError(StorageError):
    """Persisted blob was written by a newer schema than this build knows."""

    def __init__(self, key: str, found: int, supported: int) -> None:
        super().__init__(
            f"Stored '{key}' uses schema {found}, newest supported is {supported}",
            {'key': key, 'found': found, 'supported': supported},
        )
        self.key = key
        self.found = found
        self.supported = supported


class ConfigurationError(SageError):
    """Invalid configuration value."""

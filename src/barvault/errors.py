"""Custom exceptions for market data acquisition."""

from __future__ import annotations


class BarVaultError(Exception):
    """Base exception for all barvault errors."""


class ConfigurationError(BarVaultError):
    """Raised when a request or the environment is misconfigured."""


class MissingApiKeyError(ConfigurationError):
    """Raised when a vendor API key cannot be resolved."""


class NotFoundError(BarVaultError):
    """Raised when the requested series does not exist at a source."""


class SymbolNotFoundError(NotFoundError):
    """Raised when a vendor does not know the requested symbol."""


class DatasetNotFoundError(NotFoundError):
    """Raised when a local dataset file is missing."""


class VendorError(BarVaultError):
    """Raised when a remote vendor request fails."""

    def __init__(self, message: str, vendor: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.vendor = vendor
        self.status = status


class AuthError(VendorError):
    """Raised on 401/403 responses. Never retried."""


class RangeRejectedError(VendorError):
    """Raised when a vendor rejects the requested date window (HTTP 400)."""


class RateLimitedError(VendorError):
    """Raised when a vendor keeps answering 429 past the retry cap."""


class TransientHttpError(VendorError):
    """Raised on unexpected HTTP statuses or transport failures."""


class ParseError(BarVaultError):
    """Raised when a vendor payload cannot be decoded."""


class CoverageInsufficientError(BarVaultError):
    """Raised when a local dataset does not span the requested window."""


class FallbackExhaustedError(BarVaultError):
    """Raised when every vendor in a fallback chain failed."""

    def __init__(self, message: str, failures: list[tuple[str, str]]) -> None:
        super().__init__(message)
        self.failures = failures


class StorageError(BarVaultError):
    """Raised when a dataset file cannot be written."""

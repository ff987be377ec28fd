"""
Custom exceptions for the Checkup application.

This module defines domain-specific exceptions that categorize failures of
request parsing, upstream fetching, cache persistence and asset resolution.
"""

from datetime import datetime
from typing import Optional


class CheckupError(Exception):
    """
    Base exception for all Checkup errors.

    All custom exceptions in Checkup inherit from this class so callers can
    catch every application-specific error in one place.
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CheckupError):
    """
    Exception raised when configuration is invalid or cannot be read.

    This includes:
    - Unreadable or malformed YAML configuration files
    - Values of the wrong type or out of range
    """

    pass


# =============================================================================
# Request Errors
# =============================================================================


class InvalidRequestError(CheckupError):
    """Exception raised when a repository path in a request is malformed."""

    def __init__(
        self, message: str, path: Optional[str] = None, details: Optional[str] = None
    ) -> None:
        super().__init__(message, details)
        self.path = path


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(CheckupError):
    """
    Base exception for failures while fetching releases from an upstream.

    Attributes:
        url: The upstream URL being requested when the error occurred.
        status_code: HTTP status code returned by the upstream, if any.
        is_retryable: Whether a later attempt may succeed.
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        is_retryable: bool = False,
        details: Optional[str] = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.status_code = status_code
        self.is_retryable = is_retryable


class UpstreamNotFoundError(ProviderError):
    """Exception raised when the upstream reports that the repository does not exist."""

    pass


class UpstreamUnavailableError(ProviderError):
    """
    Exception raised for transient upstream failures.

    This includes:
    - Connection errors and timeouts
    - 5xx responses
    - Unexpected or undecodable payloads
    """

    pass


class RateLimitedError(UpstreamUnavailableError):
    """
    Exception raised when an upstream API rate limit is exhausted.

    Attributes:
        reset_time: When the rate limit resets, if the upstream reported it.
        remaining: Number of requests remaining in the current window.
    """

    def __init__(
        self,
        message: str = "Upstream API rate limit exceeded",
        reset_time: Optional[datetime] = None,
        remaining: int = 0,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            url=url,
            status_code=status_code,
            is_retryable=True,
            details=f"Resets at: {reset_time}, Remaining: {remaining}",
        )
        self.reset_time = reset_time
        self.remaining = remaining


class ParseFailureError(ProviderError):
    """Exception raised when a scraped upstream page has an unexpected structure."""

    pass


# =============================================================================
# Resolution and Cache Errors
# =============================================================================


class NoMatchingAssetError(CheckupError):
    """Exception raised when no asset of the latest release matches an extension."""

    def __init__(
        self,
        message: str,
        extension: Optional[str] = None,
        tag_name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.extension = extension
        self.tag_name = tag_name


class CacheIOError(CheckupError):
    """Exception raised when cache files cannot be written or read."""

    def __init__(
        self, message: str, path: Optional[str] = None, details: Optional[str] = None
    ) -> None:
        super().__init__(message, details)
        self.path = path

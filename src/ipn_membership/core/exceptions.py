"""
Exception hierarchy for the IPN membership functions.

All package exceptions inherit from IPNMembershipError for easy catching.
"""

from __future__ import annotations

from typing import Any


class IPNMembershipError(Exception):
    """
    Base exception for all package errors.

    Example:
        >>> try:
        ...     config = Config.from_env()
        ... except IPNMembershipError as e:
        ...     print(f"Startup failed: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(IPNMembershipError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Required environment variables are not set
    - Configuration values fail validation
    """

    pass


class ParseError(IPNMembershipError):
    """
    The webhook body could not be turned into a notification.

    Permanent: redelivering the same body will not help.
    """

    pass


class UnsupportedMediaTypeError(ParseError):
    """Body was not ``application/x-www-form-urlencoded``."""

    def __init__(
        self,
        message: str,
        content_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.content_type = content_type


class MalformedPayloadError(ParseError):
    """
    Body is form-encoded but unusable.

    Raised when:
    - A percent-escape is invalid or decodes to non-UTF-8 bytes
    - A required IPN field is missing or has an unparseable value
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field


class NetworkError(IPNMembershipError):
    """
    Network or API communication error.

    Raised when:
    - HTTP request fails (timeout, connection error)
    - API returns an unexpected status or body
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class MailingListError(NetworkError):
    """
    MailChimp rejected a request or could not be reached.

    ``title`` is taken from MailChimp's problem-JSON error body when present.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        title: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, url=url, details=details)
        self.title = title

    def is_transient(self) -> bool:
        """Network failures, rate limits and 5xx are worth retrying."""
        return self.status_code is None or self.is_rate_limited() or self.is_server_error()

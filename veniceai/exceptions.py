"""
Exception classes for the Venice AI Python SDK.

Every error carries a ``kind`` discriminant so callers can branch on
``err.kind`` instead of chains of ``isinstance`` checks.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class ErrorKind(str, Enum):
    """Classification of SDK errors."""

    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    PAYMENT_REQUIRED = "payment_required"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    STREAM = "stream"
    CANCELLED = "cancelled"
    API = "api"


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class VeniceError(Exception):
    """Base exception for Venice SDK errors."""

    kind: ErrorKind = ErrorKind.API

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body
        self.headers: Dict[str, str] = dict(headers or {})
        self.attempts = 1

    @property
    def retryable(self) -> bool:
        """Whether the retry executor may try the call again."""
        return False

    def __str__(self) -> str:
        text = f"[{self.status_code}] {self.message}" if self.status_code else self.message
        if self.attempts > 1:
            text += f" (after {self.attempts} attempts)"
        return text


class VeniceConnectionError(VeniceError):
    """Network-level failure talking to the API."""

    kind = ErrorKind.CONNECTION

    def __init__(self, message: str = "Failed to connect to the Venice API") -> None:
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return True


class VeniceTimeoutError(VeniceError):
    """Request timed out."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str = "Request timed out", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)

    @property
    def retryable(self) -> bool:
        return True


class VeniceCancelledError(VeniceError):
    """The caller cancelled the request."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Request was cancelled") -> None:
        super().__init__(message)


class VeniceStreamError(VeniceError):
    """Malformed server-sent event stream."""

    kind = ErrorKind.STREAM


class VeniceValidationError(VeniceError):
    """Request validation error, raised locally or by a 400/422 response."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        fields: Optional[Iterable[str]] = None,
        status_code: Optional[int] = None,
        body: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body, headers=headers)
        self.fields: List[str] = list(fields or [])


class VeniceAPIError(VeniceError):
    """Error response from the Venice API."""

    kind = ErrorKind.API

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class VeniceAuthenticationError(VeniceAPIError):
    """Authentication error."""

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class VenicePaymentRequiredError(VeniceAPIError):
    """Insufficient balance for the request."""

    kind = ErrorKind.PAYMENT_REQUIRED

    def __init__(self, message: str = "Payment required", **kwargs: Any) -> None:
        super().__init__(message, status_code=402, **kwargs)


class VenicePermissionError(VeniceAPIError):
    """Permission denied error."""

    kind = ErrorKind.PERMISSION

    def __init__(self, message: str = "Permission denied", **kwargs: Any) -> None:
        super().__init__(message, status_code=403, **kwargs)


class VeniceNotFoundError(VeniceAPIError):
    """Resource not found error."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str = "Resource not found", **kwargs: Any) -> None:
        super().__init__(message, status_code=404, **kwargs)


class VeniceRateLimitError(VeniceAPIError):
    """
    Rate limit exceeded.

    Raised for 429 responses and when the local admission queue is full.
    ``retry_after`` is in seconds when the service supplied a hint.
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        rate_limit: Optional[Any] = None,
        status_code: Optional[int] = 429,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, status_code=status_code, **kwargs)
        self.retry_after = retry_after
        self.rate_limit = rate_limit


class VeniceServerError(VeniceAPIError):
    """Server error."""

    kind = ErrorKind.SERVER

    def __init__(self, message: str = "Internal server error", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 500)
        super().__init__(message, **kwargs)


def _parse_retry_after(headers: Mapping[str, str], body: Any) -> Optional[float]:
    value: Any = None
    for name, header in headers.items():
        if name.lower() == "retry-after":
            value = header
            break
    if value is None and isinstance(body, dict):
        value = body.get("retryAfter", body.get("retry_after"))
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def error_message_from_body(body: Any, default: str) -> str:
    """Pull a human-readable message out of an error payload."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or default)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return default


def error_from_response(
    status_code: int,
    message: str,
    body: Optional[Any] = None,
    headers: Optional[Mapping[str, str]] = None,
    rate_limit: Optional[Any] = None,
) -> VeniceError:
    """Build the appropriate exception for an HTTP error status."""
    headers = dict(headers or {})
    common: Dict[str, Any] = {"body": body, "headers": headers}

    if status_code == 401:
        return VeniceAuthenticationError(message, **common)
    if status_code == 402:
        return VenicePaymentRequiredError(message, **common)
    if status_code == 403:
        return VenicePermissionError(message, **common)
    if status_code == 404:
        return VeniceNotFoundError(message, **common)
    if status_code == 408:
        return VeniceTimeoutError(message, status_code=408, **common)
    if status_code in (400, 422):
        fields: List[str] = []
        if isinstance(body, dict) and isinstance(body.get("details"), dict):
            fields = list(body["details"])
        return VeniceValidationError(message, fields=fields, status_code=status_code, **common)
    if status_code == 429:
        return VeniceRateLimitError(
            message,
            retry_after=_parse_retry_after(headers, body),
            rate_limit=rate_limit,
            **common,
        )
    if status_code >= 500:
        return VeniceServerError(message, status_code=status_code, **common)
    return VeniceAPIError(message, status_code=status_code, **common)

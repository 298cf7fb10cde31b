"""
error_handler.py

Closed error taxonomy for catalog access, the classifier that maps raw
transport/parse failures onto it, and the user-facing message table.
"""
import enum
import json
from dataclasses import dataclass
from typing import Optional

import httpx
import pydantic


class ErrorKind(str, enum.Enum):
    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    MALFORMED_RESPONSE = "malformed_response"
    VALIDATION = "validation"
    CACHE = "cache"


RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.SERVER})


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


class CatalogError(Exception):
    """Base exception for classified catalog errors."""
    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)

    def __repr__(self) -> str:
        code = f", status_code={self.status_code}" if self.status_code is not None else ""
        return f"{type(self).__name__}({self.message!r}{code})"


class NetworkError(CatalogError):
    """No connectivity, DNS failure or timeout."""
    kind = ErrorKind.NETWORK


class AuthError(CatalogError):
    """Rejected or missing credential (API key or session)."""
    kind = ErrorKind.AUTH


class NotFoundError(CatalogError):
    kind = ErrorKind.NOT_FOUND


class RateLimitedError(CatalogError):
    kind = ErrorKind.RATE_LIMITED


class ServerError(CatalogError):
    kind = ErrorKind.SERVER


class MalformedResponseError(CatalogError):
    """Payload present but not parseable or missing required fields."""
    kind = ErrorKind.MALFORMED_RESPONSE


class ValidationError(CatalogError):
    """Caller-supplied argument out of domain. Raised before any I/O."""
    kind = ErrorKind.VALIDATION


class CacheError(CatalogError):
    """Durable cache storage failure."""
    kind = ErrorKind.CACHE


def error_for_status(status_code: int, message: Optional[str] = None) -> CatalogError:
    """Map a non-2xx HTTP status onto the taxonomy."""
    if status_code in (401, 403):
        return AuthError(message or "Authentication failed", status_code)
    if status_code == 404:
        return NotFoundError(message or "Resource not found", status_code)
    if status_code == 429:
        return RateLimitedError(message or "Rate limit exceeded", status_code)
    if status_code >= 500:
        return ServerError(message or "Server error", status_code)
    return ValidationError(message or f"Request rejected ({status_code})", status_code)


def status_message(response: httpx.Response) -> Optional[str]:
    """Read TMDb's ``status_message`` field from an error body, if any."""
    try:
        body = response.json()
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(body, dict):
        message = body.get("status_message")
        return message if isinstance(message, str) else None
    return None


def classify(exc: BaseException) -> CatalogError:
    """Return the classified error for any failure raised by a transport or parse step.

    Pure: never raises, never logs.
    """
    if isinstance(exc, CatalogError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return error_for_status(exc.response.status_code, status_message(exc.response))
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError("Request timeout")
    if isinstance(exc, (httpx.TransportError, OSError)):
        return NetworkError("No internet connection")
    if isinstance(exc, (json.JSONDecodeError, pydantic.ValidationError)):
        return MalformedResponseError("Invalid response format")
    if isinstance(exc, (KeyError, TypeError, ValueError)):
        return MalformedResponseError(f"Response missing required data: {exc}")
    return MalformedResponseError(f"Unexpected failure handling response: {exc!r}")


@dataclass(frozen=True)
class ErrorReport:
    kind: ErrorKind
    message: str
    offer_retry: bool
    reauthenticate: bool = False


ERROR_MESSAGES = {
    ErrorKind.NETWORK: "Please check your internet connection and try again",
    ErrorKind.AUTH: "Authentication failed. Please log in again",
    ErrorKind.NOT_FOUND: "The requested movie could not be found",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again",
    ErrorKind.SERVER: "Unable to fetch data. Please try again later",
    ErrorKind.MALFORMED_RESPONSE: "Invalid data received. Please try again",
    ErrorKind.VALIDATION: "The request was not valid",
    ErrorKind.CACHE: "Unable to load cached data",
}


def describe(error: CatalogError) -> ErrorReport:
    """User-facing message plus whether to offer retry or re-authentication."""
    kind = error.kind
    return ErrorReport(
        kind=kind,
        message=ERROR_MESSAGES[kind],
        offer_retry=is_retryable(kind),
        reauthenticate=kind is ErrorKind.AUTH,
    )

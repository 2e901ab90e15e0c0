"""
Error taxonomy for remote calls.

Fetch operations report failures as a `FetchResult` carrying a `FetchError`
tagged with an `ErrorKind`; callers inspect the kind instead of catching
exceptions. `ConfigurationError` is the one exception that crosses module
boundaries, and only at startup.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, Tuple, TypeVar

import requests
from requests import Response

from youtube_models import MissingConfig

T = TypeVar("T")


class ErrorKind(Enum):
    TRANSIENT = "transient"
    RECOVERABLE_AUTH = "recoverable_auth"
    CONFIGURATION = "configuration"
    PERMANENT = "permanent"


# Google API error reasons, grouped by how the session should react.
AUTH_REASONS = frozenset(
    {
        "authError",
        "insufficientPermissions",
        "ACCESS_TOKEN_SCOPE_INSUFFICIENT",
        "UNAUTHENTICATED",
        "consentRequired",
    }
)
RATE_LIMIT_REASONS = frozenset(
    {
        "rateLimitExceeded",
        "userRateLimitExceeded",
        "quotaExceeded",
        "RESOURCE_EXHAUSTED",
    }
)


@dataclass(frozen=True)
class FetchError:
    kind: ErrorKind
    message: str
    reason: str = "unknown"
    status: Optional[int] = None

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (status={self.status}, reason={self.reason})"
        return f"{self.message} (reason={self.reason})"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of one fetch: exactly one of `value` or `error` is set."""

    value: Optional[T] = None
    error: Optional[FetchError] = None

    @classmethod
    def success(cls, value: T) -> "FetchResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, reason: str = "unknown", status: Optional[int] = None) -> "FetchResult[T]":
        return cls(error=FetchError(kind, message, reason, status))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


class ConfigurationError(RuntimeError):
    """Required configuration is missing; the session cannot start."""

    def __init__(self, missing: List[MissingConfig]):
        self.missing = list(missing)
        titles = ", ".join(item.title for item in self.missing)
        super().__init__(f"Missing configuration: {titles}")


def parse_api_error(resp: Optional[Response]) -> Tuple[str, str]:
    """Extract message and reason from a Google API error response."""
    if resp is None:
        return ("Unknown response", "unknown")
    try:
        payload = resp.json()
        error = payload.get("error", {})
        if isinstance(error, str):
            # OAuth endpoints answer with {"error": "invalid_token", "error_description": ...}
            return payload.get("error_description", error), error
        message = error.get("message", str(resp.text))
        errors = error.get("errors", [])
        reason = errors[0].get("reason") if errors else error.get("status", "unknown")
        return message, reason or "unknown"
    except Exception:
        return (f"HTTP {resp.status_code} {resp.reason}", "unknown")


def classify_response(resp: Response) -> FetchError:
    """Map a failed HTTP response onto the error taxonomy."""
    status = resp.status_code
    message, reason = parse_api_error(resp)

    if status == 401 or reason in AUTH_REASONS:
        kind = ErrorKind.RECOVERABLE_AUTH
    elif status == 429 or status >= 500 or reason in RATE_LIMIT_REASONS:
        kind = ErrorKind.TRANSIENT
    elif status == 403 and reason == "forbidden" and "auth" in message.lower():
        kind = ErrorKind.RECOVERABLE_AUTH
    else:
        kind = ErrorKind.PERMANENT
    return FetchError(kind, message, reason, status)


def classify_exception(exc: BaseException) -> FetchError:
    """Map an exception raised while talking to an API onto the error taxonomy."""
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return classify_response(exc.response)
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return FetchError(ErrorKind.TRANSIENT, str(exc) or type(exc).__name__, "transport")
    return FetchError(ErrorKind.PERMANENT, str(exc) or type(exc).__name__, type(exc).__name__)


def is_transient(exc: BaseException) -> bool:
    return classify_exception(exc).kind is ErrorKind.TRANSIENT

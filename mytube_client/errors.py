"""
MyTube Client Error Classes

Normalized error model for every failure that crosses the transport boundary.
The backend mixes conventions (HTTP 200 with an embedded ``statusCode``,
rate-limit bodies carrying ``waitTime``, a ``Retry-After`` header), so all of
them are folded into one closed taxonomy here.
"""

import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


class AppErrorCode(str, Enum):
    """Closed set of error classes surfaced to callers."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


# Status codes that are never auto-retried, whatever the classification says.
NO_RETRY_STATUSES: FrozenSet[int] = frozenset({400, 401, 403, 404, 409, 429})

AUTH_ERROR_CODES: FrozenSet[AppErrorCode] = frozenset(
    {AppErrorCode.UNAUTHENTICATED, AppErrorCode.FORBIDDEN}
)


class AppError(Exception):
    """The single error type raised by the transport layer."""

    def __init__(
        self,
        code: AppErrorCode,
        message: str,
        http_status: Optional[int] = None,
        backend_type: Optional[str] = None,
        recoverable: Optional[bool] = None,
        wait_time_ms: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
        raw: Any = None,
    ):
        super().__init__(message)
        self.code = AppErrorCode(code)
        self.message = message
        self.http_status = http_status
        self.backend_type = backend_type
        self.recoverable = recoverable
        self.wait_time_ms = wait_time_ms
        self.retry_after_ms = retry_after_ms
        self.raw = raw
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    @property
    def is_auth_error(self) -> bool:
        return self.code in AUTH_ERROR_CODES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "http_status": self.http_status,
            "backend_type": self.backend_type,
            "recoverable": self.recoverable,
            "wait_time_ms": self.wait_time_ms,
            "retry_after_ms": self.retry_after_ms,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value!r}, message={self.message!r})"


class ConfigurationError(Exception):
    """Raised for unusable client configuration (e.g. a malformed base URL)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def map_status_to_code(status: int) -> AppErrorCode:
    """Map an effective HTTP status to an error class."""
    if status == 401:
        return AppErrorCode.UNAUTHENTICATED
    if status == 403:
        return AppErrorCode.FORBIDDEN
    if status == 404:
        return AppErrorCode.NOT_FOUND
    if status == 409:
        return AppErrorCode.CONFLICT
    if status == 429:
        return AppErrorCode.RATE_LIMIT
    if status == 400:
        return AppErrorCode.VALIDATION
    if status >= 500:
        return AppErrorCode.SERVER
    return AppErrorCode.UNKNOWN


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a valid status or duration
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_finite_number(value: Any) -> bool:
    """Check for a real number that can be converted with int() (no inf/NaN)."""
    return _is_number(value) and math.isfinite(value)


def _seconds_to_ms(seconds: float) -> Optional[int]:
    ms = seconds * 1000
    if not math.isfinite(ms) or ms < 0:
        return None
    return int(round(ms))


def parse_retry_after_ms(value: Any, now: Optional[datetime] = None) -> Optional[int]:
    """
    Parse a Retry-After style hint into milliseconds.

    Accepts a number of seconds, a numeric string, or an absolute timestamp
    (HTTP-date or ISO-8601). Past timestamps yield 0; anything unparseable
    yields None.
    """
    if _is_number(value):
        return _seconds_to_ms(value)

    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        return _seconds_to_ms(seconds)

    at = _parse_timestamp(text)
    if at is None:
        return None

    current = now or datetime.now(timezone.utc)
    delta_ms = (at - current).total_seconds() * 1000
    if delta_ms <= 0:
        return 0
    return int(round(delta_ms))


def _parse_timestamp(text: str) -> Optional[datetime]:
    try:
        at = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        at = None
    if at is None:
        try:
            at = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at


def parse_api_error(
    http_status: int,
    body: Any,
    network_message: Optional[str] = None,
    retry_after: Any = None,
) -> AppError:
    """
    Classify a failed request into an AppError.

    Args:
        http_status: Wire status (0 when no response was received)
        body: Parsed response body, or None
        network_message: Human message for transport-level failures
        retry_after: Raw Retry-After hint

    Returns:
        AppError whose ``http_status`` is the effective status: the body's
        ``statusCode`` when ``success`` is false, otherwise the wire status.
    """
    retry_after_ms = parse_retry_after_ms(retry_after)

    if body is None and network_message:
        return AppError(
            AppErrorCode.NETWORK,
            network_message,
            retry_after_ms=retry_after_ms,
        )

    fields: Mapping[str, Any] = body if isinstance(body, Mapping) else {}
    status_code = fields.get("statusCode")
    if fields.get("success") is False and is_finite_number(status_code):
        effective_status = int(status_code)
    else:
        effective_status = http_status

    message = fields.get("error")
    if message is None:
        message = fields.get("message")
    if message is None:
        message = f"Request failed ({effective_status})"

    wait_time = fields.get("waitTime")
    backend_type = fields.get("type")
    recoverable = fields.get("recoverable")

    return AppError(
        map_status_to_code(effective_status),
        str(message),
        http_status=effective_status,
        backend_type=backend_type if isinstance(backend_type, str) else None,
        recoverable=recoverable if isinstance(recoverable, bool) else None,
        wait_time_ms=int(wait_time) if is_finite_number(wait_time) else None,
        retry_after_ms=retry_after_ms,
        raw=body,
    )


def should_retry(error: AppError) -> bool:
    """Check if error is a transient failure worth retrying."""
    if error.http_status is not None and error.http_status in NO_RETRY_STATUSES:
        return False
    if error.code == AppErrorCode.NETWORK:
        return True
    if error.code == AppErrorCode.SERVER:
        return error.http_status is not None and error.http_status >= 500
    return False


def is_app_error(error: Any) -> bool:
    """Check if error is an AppError."""
    return isinstance(error, AppError)

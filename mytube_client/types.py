"""
MyTube Client Type Definitions

Configuration, storage protocol and the response schemas the session layer
branches on. Payloads the client only forwards (videos, collections, ...)
stay plain dicts so additive backend fields are never dropped.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol, Union, runtime_checkable

from .errors import is_finite_number


Role = Optional[Literal["admin", "visitor"]]

DEFAULT_API_BASE_URL = "http://10.0.2.2:5551/api"

# Fixed per-request timeout in seconds
API_TIMEOUT_SECONDS = 15.0


def normalize_role(value: Any) -> Role:
    """Return ``value`` if it is a known role, else None."""
    if value == "admin" or value == "visitor":
        return value
    return None


@runtime_checkable
class KeyValueStorage(Protocol):
    """Key-value persistence used for the cached role and backend URL."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class ClientConfig:
    """Client configuration options."""

    # API base URL, normalized to end in /api
    base_url: str = DEFAULT_API_BASE_URL
    # Request timeout in seconds (default: 15)
    timeout: float = API_TIMEOUT_SECONDS
    # Retries for idempotent requests (default: 2)
    retry_attempts: int = 2
    # Base delay between retries in seconds, multiplied by the attempt number
    retry_delay: float = 1.0
    # Enable debug logging (default: False)
    debug: bool = False
    # Custom headers to include in requests
    headers: Optional[Dict[str, str]] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """
        Build a config from environment variables.

        Reads MYTUBE_API_BASE_URL (or API_BASE_URL) and MYTUBE_DEBUG. An
        unusable base URL falls back to the default.
        """
        from .config import normalize_api_base_url

        env = os.environ if environ is None else environ
        base_url = ""
        for name in ("MYTUBE_API_BASE_URL", "API_BASE_URL"):
            value = env.get(name, "")
            if value.strip():
                base_url = normalize_api_base_url(value)
                break
        debug = env.get("MYTUBE_DEBUG", "").strip().lower() in ("1", "true", "yes")
        return cls(base_url=base_url or DEFAULT_API_BASE_URL, debug=debug)


@dataclass
class PasswordEnabledResponse:
    """Result of the login-required probe."""

    enabled: bool = False
    login_required: Optional[bool] = None
    wait_time: Optional[int] = None
    visitor_user_enabled: Optional[bool] = None
    is_visitor_password_set: Optional[bool] = None
    password_login_allowed: Optional[bool] = None
    allow_reset_password: Optional[bool] = None
    website_name: Optional[str] = None

    @property
    def requires_login(self) -> bool:
        if self.login_required is not None:
            return self.login_required
        return self.enabled

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PasswordEnabledResponse":
        return cls(
            enabled=bool(data.get("enabled", False)),
            login_required=data.get("loginRequired"),
            wait_time=data.get("waitTime"),
            visitor_user_enabled=data.get("visitorUserEnabled"),
            is_visitor_password_set=data.get("isVisitorPasswordSet"),
            password_login_allowed=data.get("passwordLoginAllowed"),
            allow_reset_password=data.get("allowResetPassword"),
            website_name=data.get("websiteName"),
        )


@dataclass
class LoginSuccess:
    role: Literal["admin", "visitor"]
    success: Literal[True] = True


@dataclass
class LoginFailure:
    wait_time: Optional[int] = None
    failed_attempts: Optional[int] = None
    message: Optional[str] = None
    status_code: Optional[int] = None
    success: Literal[False] = False


LoginResponse = Union[LoginSuccess, LoginFailure]


def parse_login_response(data: Any) -> LoginResponse:
    """
    Parse a verification response body.

    Anything that is not ``{"success": true, "role": <known role>}`` is a
    failure.
    """
    body: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
    role = normalize_role(body.get("role"))
    if body.get("success") is True and role is not None:
        return LoginSuccess(role=role)
    status_code = body.get("statusCode")
    wait_time = body.get("waitTime")
    return LoginFailure(
        wait_time=wait_time if is_finite_number(wait_time) else None,
        failed_attempts=body.get("failedAttempts"),
        message=body.get("message"),
        status_code=status_code if isinstance(status_code, int) else None,
    )


@dataclass
class PasskeyAuthBeginResponse:
    """Challenge issued by the passkey authenticate endpoint."""

    options: Dict[str, Any]
    challenge: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PasskeyAuthBeginResponse":
        options = data.get("options")
        return cls(
            options=dict(options) if isinstance(options, Mapping) else {},
            challenge=str(data.get("challenge", "")),
        )


@dataclass
class DownloadStatusResponse:
    active_downloads: List[Dict[str, Any]] = field(default_factory=list)
    queued_downloads: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_work(self) -> bool:
        return bool(self.active_downloads or self.queued_downloads)

    @classmethod
    def from_dict(cls, data: Any) -> "DownloadStatusResponse":
        body: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
        active = body.get("activeDownloads")
        queued = body.get("queuedDownloads")
        return cls(
            active_downloads=list(active) if isinstance(active, list) else [],
            queued_downloads=list(queued) if isinstance(queued, list) else [],
        )


@dataclass
class CloudSignedUrlResponse:
    """Short-lived URL for a cloud-stored video or thumbnail."""

    success: bool = False
    url: Optional[str] = None
    cached: Optional[bool] = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "CloudSignedUrlResponse":
        body: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
        url = body.get("url")
        return cls(
            success=body.get("success") is True,
            url=url if isinstance(url, str) and url else None,
            cached=body.get("cached"),
            message=body.get("message"),
        )

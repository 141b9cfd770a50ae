"""
Backend address handling.

The user can point the app at a different server while it runs, so the
transport re-reads ``RuntimeBaseUrl`` on every request instead of capturing
the address at construction.
"""

import re
import threading

from .errors import ConfigurationError
from .types import DEFAULT_API_BASE_URL


_BASE_URL_PATTERN = re.compile(
    r"^(https?)://([^/?#]+)(/[^?#]*)?(?:\?[^#]*)?(?:#.*)?$", re.IGNORECASE
)
_API_SUFFIX = re.compile(r"/api/?$")


def _normalize_api_path(path: str) -> str:
    collapsed = re.sub(r"/{2,}", "/", path)
    base_path = collapsed.rstrip("/")
    with_api = base_path if base_path.endswith("/api") else f"{base_path}/api"
    return with_api if with_api.startswith("/") else f"/{with_api}"


def normalize_api_base_url(url: str) -> str:
    """
    Normalize a user-supplied backend address.

    ``HTTP://host:5551//`` becomes ``http://host:5551/api``. Query strings and
    fragments are dropped. Returns an empty string for anything that is not a
    usable http(s) URL.
    """
    match = _BASE_URL_PATTERN.match(url.strip())
    if not match:
        return ""

    scheme = match.group(1).lower()
    host = match.group(2).strip()
    if not host or "@" in host or re.search(r"\s", host):
        return ""

    return f"{scheme}://{host}{_normalize_api_path(match.group(3) or '')}"


class RuntimeBaseUrl:
    """Runtime-mutable backend base URL, shared by the transport and callers."""

    def __init__(self, url: str = DEFAULT_API_BASE_URL) -> None:
        self._lock = threading.Lock()
        self._url = self._validated(url)

    @staticmethod
    def _validated(url: str) -> str:
        normalized = normalize_api_base_url(url)
        if not normalized:
            raise ConfigurationError(f"Invalid backend URL: {url!r}")
        return normalized

    def get(self) -> str:
        with self._lock:
            return self._url

    def set(self, url: str) -> str:
        """Replace the base URL; returns the normalized value."""
        normalized = self._validated(url)
        with self._lock:
            self._url = normalized
        return normalized

    @property
    def host_base(self) -> str:
        """Base URL without the ``/api`` suffix, for building media URLs."""
        return _API_SUFFIX.sub("", self.get())

    def resolve(self, path: str) -> str:
        """Join a request path onto the current base URL."""
        return f"{self.get().rstrip('/')}/{path.lstrip('/')}"


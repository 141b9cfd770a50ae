"""
In-flight guard for write requests.

Concurrent calls for the same ``METHOD target`` key share one execution and
one outcome, so a double-tapped "rate" or "delete" reaches the server once.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, TypeVar


logger = logging.getLogger("mytube_client")

T = TypeVar("T")

_REPEATED_SLASHES = re.compile(r"/{2,}")
_TRAILING_SLASHES = re.compile(r"/+$")
_ABSOLUTE_URL = re.compile(r"^(https?://[^/?#]+)(/[^?#]*)?(\?[^#]*)?", re.IGNORECASE)


def _normalize_path_part(path: str) -> str:
    collapsed = _REPEATED_SLASHES.sub("/", path)
    return _TRAILING_SLASHES.sub("", collapsed) or "/"


def _normalize_path(path: str) -> str:
    trimmed = path.strip()
    if not trimmed:
        return "/"
    if not trimmed.startswith("/"):
        trimmed = f"/{trimmed}"
    raw_path, _, raw_query = trimmed.partition("?")
    normalized = _normalize_path_part(raw_path)
    return f"{normalized}?{raw_query}" if raw_query else normalized


def _normalize_absolute_url(url: str) -> str:
    match = _ABSOLUTE_URL.match(url.strip())
    if not match:
        return _normalize_path(url)
    origin = _TRAILING_SLASHES.sub("", match.group(1))
    path = _normalize_path_part(match.group(2) or "/")
    query = match.group(3) or ""
    return f"{origin}{path}{query}"


def normalize_target(target: str) -> str:
    """Normalize a relative path or absolute URL for use in a dedup key."""
    trimmed = target.strip()
    if not trimmed:
        return "/"
    lowered = trimmed.lower()
    if lowered.startswith("http://") or lowered.startswith("https://"):
        return _normalize_absolute_url(trimmed)
    return _normalize_path(trimmed)


def build_inflight_key(method: str, target: str) -> str:
    """Build the ``METHOD target`` key, e.g. ``POST /videos/1/rate``."""
    return f"{method.strip().upper()} {normalize_target(target)}"


class RequestDeduplicator:
    """
    Ledger of in-flight operations keyed by normalized request key.

    ``run_once`` is synchronous: lookup and insertion happen without a
    suspension point in between, so two callers can never both register.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

    def run_once(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
    ) -> "asyncio.Future[T]":
        """
        Run ``factory`` unless an operation for ``key`` is already pending.

        Returns:
            A shielded view of the pending task for ``key``; await it for the
            shared outcome. Cancelling one caller's view leaves the shared
            operation running for the others.
        """
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug("[MyTube] Joining in-flight request %s", key)
            return asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._in_flight[key] = task

        def _settle(done: "asyncio.Future[Any]") -> None:
            if self._in_flight.get(key) is done:
                del self._in_flight[key]
            # mark the outcome as retrieved when nobody awaited a failure
            if not done.cancelled():
                done.exception()

        task.add_done_callback(_settle)
        return asyncio.shield(task)

    def pending_count(self) -> int:
        return len(self._in_flight)

    def clear(self) -> None:
        self._in_flight.clear()

"""
MyTube Client Transport

Async transport for the MyTube backend. Every call resolves the current base
URL, keeps the cookie session, retries transient failures of read-only
requests, collapses duplicate concurrent writes, and surfaces failures as a
classified ``AppError`` with the response envelope already unwrapped.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from .config import RuntimeBaseUrl
from .envelope import unwrap
from .errors import AppError, AppErrorCode, is_finite_number, parse_api_error, should_retry
from .inflight import RequestDeduplicator, build_inflight_key
from .media import MediaUrlResolver
from .types import (
    ClientConfig,
    CloudSignedUrlResponse,
    DownloadStatusResponse,
    LoginResponse,
    PasskeyAuthBeginResponse,
    PasswordEnabledResponse,
    parse_login_response,
)


logger = logging.getLogger("mytube_client")

# Methods without side effects; only these are retried or trigger reauth on 403.
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def is_idempotent_method(method: Optional[str]) -> bool:
    """Check if ``method`` is a read-only verb. Blank/unknown methods are not."""
    if not isinstance(method, str):
        return False
    return method.strip().upper() in IDEMPOTENT_METHODS


def should_trigger_reauth(method: Optional[str], error: AppError) -> bool:
    """
    Decide whether a failure invalidates the session.

    401 on any method does. 403 only does on reads: a 403 on a write is the
    expected "your role cannot do this" answer for visitors.
    """
    if error.code == AppErrorCode.UNAUTHENTICATED:
        return True
    return error.code == AppErrorCode.FORBIDDEN and is_idempotent_method(method)


@dataclass(frozen=True)
class RequestContext:
    """One logical request; ``attempt`` is bumped by replacement on retry."""

    method: str
    path: str
    body: Any = None
    params: Optional[Mapping[str, Any]] = None
    attempt: int = 0


# =============================================================================
# Endpoint Namespaces
# =============================================================================

class AuthNamespace:
    """Login, passkey and session endpoints."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def get_password_enabled(self) -> PasswordEnabledResponse:
        data = await self._client.get("/settings/password-enabled")
        return PasswordEnabledResponse.from_dict(data if isinstance(data, Mapping) else {})

    async def get_passkeys_exists(self) -> bool:
        data = await self._client.get("/settings/passkeys/exists")
        return bool(data.get("exists")) if isinstance(data, Mapping) else False

    async def get_reset_password_cooldown(self) -> int:
        data = await self._client.get("/settings/reset-password-cooldown")
        cooldown = data.get("cooldown") if isinstance(data, Mapping) else None
        return int(cooldown) if is_finite_number(cooldown) else 0

    async def verify_admin_password(self, password: str) -> LoginResponse:
        data = await self._client.post(
            "/settings/verify-admin-password", {"password": password}
        )
        return parse_login_response(data)

    async def verify_visitor_password(self, password: str) -> LoginResponse:
        data = await self._client.post(
            "/settings/verify-visitor-password", {"password": password}
        )
        return parse_login_response(data)

    async def passkeys_authenticate(self) -> PasskeyAuthBeginResponse:
        """Begin a passkey login; returns the assertion options and challenge."""
        data = await self._client.post("/settings/passkeys/authenticate")
        return PasskeyAuthBeginResponse.from_dict(data if isinstance(data, Mapping) else {})

    async def passkeys_authenticate_verify(
        self, assertion: Dict[str, Any], challenge: str
    ) -> LoginResponse:
        data = await self._client.post(
            "/settings/passkeys/authenticate/verify",
            {"body": assertion, "challenge": challenge},
        )
        return parse_login_response(data)

    async def logout(self) -> Any:
        return await self._client.post("/settings/logout")


class SettingsNamespace:
    """Server settings endpoints."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def get(self) -> Dict[str, Any]:
        data = await self._client.get("/settings")
        return dict(data) if isinstance(data, Mapping) else {}

    async def update(self, payload: Dict[str, Any]) -> Any:
        return await self._client.post("/settings", payload)

    async def get_system_version(self) -> Any:
        return await self._client.get("/system/version")


class VideosNamespace:
    """Video library endpoints."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def list(self) -> List[Dict[str, Any]]:
        return await self._client.get("/videos")

    async def get(self, video_id: str) -> Dict[str, Any]:
        return await self._client.get(f"/videos/{video_id}")

    async def get_comments(self, video_id: str) -> List[Dict[str, Any]]:
        return await self._client.get(f"/videos/{video_id}/comments")

    async def get_author_channel_url(self, source_url: str) -> Any:
        return await self._client.get(
            "/videos/author-channel-url", params={"sourceUrl": source_url}
        )

    async def increment_view(self, video_id: str) -> Any:
        return await self._client.post(f"/videos/{video_id}/view")

    async def update_progress(self, video_id: str, progress: float) -> Any:
        return await self._client.put(
            f"/videos/{video_id}/progress", {"progress": progress}
        )

    async def rate(self, video_id: str, rating: int) -> Any:
        return await self._client.post(f"/videos/{video_id}/rate", {"rating": rating})

    async def update(self, video_id: str, payload: Dict[str, Any]) -> Any:
        return await self._client.put(f"/videos/{video_id}", payload)

    async def delete(self, video_id: str) -> Any:
        return await self._client.delete(f"/videos/{video_id}")


class CollectionsNamespace:
    """Collection endpoints."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def list(self) -> List[Dict[str, Any]]:
        return await self._client.get("/collections")

    async def create(self, name: str, video_id: Optional[str] = None) -> Any:
        body: Dict[str, Any] = {"name": name}
        if video_id:
            body["videoId"] = video_id
        return await self._client.post("/collections", body)

    async def update(self, collection_id: str, payload: Dict[str, Any]) -> Any:
        return await self._client.put(f"/collections/{collection_id}", payload)

    async def delete(
        self, collection_id: str, delete_videos: Optional[bool] = None
    ) -> Any:
        # deleteVideos modifies the same logical write, so it stays out of the key
        params = None
        if delete_videos is not None:
            params = {"deleteVideos": "true" if delete_videos else "false"}
        return await self._client.delete(f"/collections/{collection_id}", params=params)


class CloudNamespace:
    """Cloud storage endpoints."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def get_signed_url(self, filename: str, media_type: str = "video") -> CloudSignedUrlResponse:
        """Fetch a signed URL for a ``cloud:`` video (``media_type="video"``) or thumbnail."""
        data = await self._client.get(
            "/cloud/signed-url", params={"filename": filename, "type": media_type}
        )
        return CloudSignedUrlResponse.from_dict(data)


class DownloadsNamespace:
    """Download queue endpoints (polled)."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def get_status(self) -> DownloadStatusResponse:
        return DownloadStatusResponse.from_dict(await self._client.get("/download-status"))

    async def get_history(self) -> List[Dict[str, Any]]:
        return await self._client.get("/downloads/history")


class SubscriptionsNamespace:
    """Subscription endpoints (polled)."""

    def __init__(self, client: "MyTubeClient") -> None:
        self._client = client

    async def list(self) -> List[Dict[str, Any]]:
        return await self._client.get("/subscriptions")

    async def get_tasks(self) -> List[Dict[str, Any]]:
        return await self._client.get("/subscriptions/tasks")


# =============================================================================
# Transport Client
# =============================================================================

class MyTubeClient:
    """
    MyTube Client - async transport entry point.

    Read-only requests are retried on transient failures; writes are never
    retried and are deduplicated per ``METHOD path`` while in flight.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        base_url: Optional[RuntimeBaseUrl] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client."""
        config = config or ClientConfig()

        self._base_url = base_url if base_url is not None else RuntimeBaseUrl(config.base_url)
        self._timeout = config.timeout
        self._retry_attempts = max(0, config.retry_attempts)
        self._retry_delay = config.retry_delay
        self._debug = config.debug
        self._custom_headers = config.headers or {}
        self._deduplicator = deduplicator if deduplicator is not None else RequestDeduplicator()
        self._unauthorized_handler: Optional[Callable[[], None]] = None

        # HTTP client (created lazily); its cookie jar carries the session
        self._http_client = http_client

        # Namespaces
        self.auth = AuthNamespace(self)
        self.settings = SettingsNamespace(self)
        self.videos = VideosNamespace(self)
        self.collections = CollectionsNamespace(self)
        self.downloads = DownloadsNamespace(self)
        self.subscriptions = SubscriptionsNamespace(self)
        self.cloud = CloudNamespace(self)
        self.media = MediaUrlResolver(self._base_url)

        self._log(f"MyTubeClient initialized (base_url={self._base_url.get()})")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[MyTube] {message}", *args)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @property
    def base_url(self) -> RuntimeBaseUrl:
        return self._base_url

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    def set_unauthorized_handler(self, handler: Optional[Callable[[], None]]) -> None:
        """Register the single callback run when the session is invalidated."""
        if self._unauthorized_handler is not None and handler is not None:
            self._log("Replacing unauthorized handler")
        self._unauthorized_handler = handler

    # =========================================================================
    # Verb Helpers
    # =========================================================================

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, body=body, dedupe=True)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, body=body, dedupe=True)

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self.request("PATCH", path, body=body, dedupe=True)

    async def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("DELETE", path, params=params, dedupe=True)

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        dedupe: bool = False,
    ) -> Any:
        """
        Send a request and return the unwrapped payload.

        Args:
            method: HTTP method
            path: Path relative to the current base URL
            body: JSON body
            params: Query parameters (never part of the dedup key)
            dedupe: Share one execution among concurrent identical calls

        Raises:
            AppError: For every failure, already classified
        """
        context = RequestContext(method=method.strip().upper(), path=path, body=body, params=params)
        if not dedupe:
            return await self._send(context)

        key = build_inflight_key(context.method, path)
        return await self._deduplicator.run_once(key, lambda: self._send(context))

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _send(self, context: RequestContext) -> Any:
        """Execute with bounded retries for idempotent methods."""
        retryable_method = is_idempotent_method(context.method)

        while True:
            try:
                return unwrap(await self._execute_request(context))
            except AppError as error:
                attempt = context.attempt
                if not (
                    retryable_method
                    and attempt < self._retry_attempts
                    and should_retry(error)
                ):
                    if should_trigger_reauth(context.method, error):
                        self._notify_unauthorized(error)
                    raise

                delay = self._retry_delay * (attempt + 1)
                self._log(
                    "Retrying %s %s (attempt %d) in %.1fs after %s",
                    context.method, context.path, attempt + 1, delay, error.code.value,
                )
                await asyncio.sleep(delay)
                context = replace(context, attempt=attempt + 1)

    def _notify_unauthorized(self, error: AppError) -> None:
        handler = self._unauthorized_handler
        if handler is None:
            return
        self._log("Session invalidated by %s", error.code.value)
        try:
            handler()
        except Exception:
            logger.exception("Unauthorized handler failed")

    async def _execute_request(self, context: RequestContext) -> Any:
        """Execute a single HTTP request."""
        url = self._base_url.resolve(context.path)
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **self._custom_headers,
        }

        try:
            response = await self._get_client().request(
                method=context.method,
                url=url,
                headers=headers,
                params=context.params,
                json=context.body,
                timeout=self._timeout,
            )
        except httpx.TimeoutException:
            raise parse_api_error(0, None, "Request timeout")
        except httpx.RequestError as e:
            raise parse_api_error(0, None, str(e) or "Network error")

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Any:
        """Return the parsed body of a 2xx response, else raise AppError."""
        body = self._parse_body(response)
        if response.is_success:
            return body

        raise parse_api_error(
            response.status_code,
            body,
            None,
            response.headers.get("retry-after"),
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "MyTubeClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def create_mytube_client(config: Optional[ClientConfig] = None) -> MyTubeClient:
    """Create a client, reading configuration from the environment by default."""
    return MyTubeClient(config or ClientConfig.from_env())

"""
MyTube Client Session

Owns who the app is talking to the server as. At cold start it reconciles the
cached role hint with what the server reports, then tracks logins, logouts and
server-side invalidation reported by the transport.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional

from .client import MyTubeClient
from .errors import AppError, AppErrorCode
from .passkey import PasskeyAssertionCodec
from .storage import RoleStore, StorageResult
from .types import (
    LoginFailure,
    LoginResponse,
    LoginSuccess,
    PasskeyAuthBeginResponse,
    PasswordEnabledResponse,
    Role,
    normalize_role,
)


logger = logging.getLogger("mytube_client")

# Payload fields that have carried the caller's role across backend versions
ROLE_FIELDS = ("role", "userRole", "currentRole")

VISITOR_SETTINGS_EDITABLE_KEYS = frozenset({"cloudflaredTunnelEnabled", "cloudflaredToken"})


class SessionPhase(str, Enum):
    BOOTSTRAPPING = "BOOTSTRAPPING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    OPEN_ACCESS = "OPEN_ACCESS"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of the session; replaced wholesale on every transition."""

    role: Role = None
    has_valid_session: bool = False
    login_required: bool = False
    password_enabled: Optional[PasswordEnabledResponse] = None
    loading: bool = True
    error: Optional[AppError] = None
    wait_time_ms: Optional[int] = None

    @property
    def phase(self) -> SessionPhase:
        if self.loading:
            return SessionPhase.BOOTSTRAPPING
        if self.login_required:
            if self.has_valid_session:
                return SessionPhase.AUTHENTICATED
            return SessionPhase.UNAUTHENTICATED
        if self.has_valid_session and self.role is not None:
            return SessionPhase.AUTHENTICATED
        return SessionPhase.OPEN_ACCESS


def resolve_startup_role(login_required: bool, has_valid_session: bool, probe_role: Role) -> Role:
    """A cached role never survives into an open-access deployment."""
    if not login_required:
        return None
    return probe_role if has_valid_session else None


def role_from_settings(settings: Any) -> Role:
    """Extract the role from a settings payload, checking legacy field names."""
    if not isinstance(settings, Mapping):
        return None
    for name in ROLE_FIELDS:
        role = normalize_role(settings.get(name))
        if role is not None:
            return role
    return None


def login_failure_code(failure: LoginFailure) -> AppErrorCode:
    if failure.status_code == 429:
        return AppErrorCode.RATE_LIMIT
    return AppErrorCode.UNAUTHENTICATED


# =============================================================================
# Role Gate
# =============================================================================

def is_admin(role: Role) -> bool:
    return role == "admin"


def can_mutate(role: Role, login_required: bool = True) -> bool:
    """
    True when the role may run mutating actions (delete, update, download).

    With login disabled server-side a null role is writable; visitors never are.
    """
    if not login_required:
        return role != "visitor"
    return role == "admin"


def can_edit_settings(role: Role, keys: Iterable[str], login_required: bool = True) -> bool:
    """Admins edit everything; visitors only the tunnel settings."""
    if not login_required and role != "visitor":
        return True
    if role == "admin":
        return True
    if role != "visitor":
        return False
    return all(key in VISITOR_SETTINGS_EDITABLE_KEYS for key in keys)


# =============================================================================
# Session Controller
# =============================================================================

class SessionController:
    """
    Process-wide session state machine.

    Create one per client at startup; it registers itself as the client's
    unauthorized handler.
    """

    def __init__(
        self,
        client: MyTubeClient,
        role_store: Optional[RoleStore] = None,
        passkey_codec: Optional[PasskeyAssertionCodec] = None,
    ) -> None:
        self._client = client
        self._role_store = role_store if role_store is not None else RoleStore()
        self._passkey_codec = passkey_codec if passkey_codec is not None else PasskeyAssertionCodec()
        self._listeners: List[Callable[[SessionState], None]] = []
        self.last_storage_result: Optional[StorageResult] = None

        self._state = SessionState(role=self._role_store.load())
        client.set_unauthorized_handler(self._handle_unauthorized)

    # =========================================================================
    # State Access
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def role(self) -> Role:
        return self._state.role

    @property
    def has_valid_session(self) -> bool:
        return self._state.has_valid_session

    @property
    def login_required(self) -> bool:
        return self._state.login_required

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> Optional[AppError]:
        return self._state.error

    @property
    def wait_time_ms(self) -> Optional[int]:
        return self._state.wait_time_ms

    def add_listener(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        """Subscribe to state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _update(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Session listener failed")

    def _persist_role(self, role: Role) -> StorageResult:
        self.last_storage_result = self._role_store.save(role)
        return self.last_storage_result

    # =========================================================================
    # Startup Probe
    # =========================================================================

    async def refresh_auth_config(self) -> SessionState:
        """
        Resolve login requirement, session validity and role with the server.

        Connectivity or server failures never force a login wall: the error is
        surfaced and the app stays browsable.
        """
        self._update(loading=True, error=None)
        try:
            password_enabled = await self._client.auth.get_password_enabled()
        except AppError as probe_error:
            logger.debug("Login-required probe failed (%s); probing settings", probe_error.code.value)
            await self._resolve_without_probe(probe_error)
            return self._state

        login_required = password_enabled.requires_login
        has_valid_session = not login_required
        startup_error: Optional[AppError] = None
        probe_role: Role = self._role_store.load() if login_required else None

        if login_required:
            try:
                settings = await self._client.settings.get()
                has_valid_session = True
                probe_role = role_from_settings(settings) or probe_role
            except AppError as e:
                has_valid_session = False
                if not e.is_auth_error:
                    login_required = False
                    startup_error = e

        resolved_role = resolve_startup_role(login_required, has_valid_session, probe_role)
        self._persist_role(resolved_role)

        self._update(
            password_enabled=password_enabled,
            login_required=login_required,
            has_valid_session=has_valid_session,
            role=resolved_role,
            loading=False,
            error=startup_error,
        )
        return self._state

    async def _resolve_without_probe(self, probe_error: AppError) -> None:
        # Some backends do not serve the login-required probe reliably; only
        # an explicit auth rejection from /settings forces login.
        login_required = False
        has_valid_session = False
        resolved_role: Role = None
        startup_error: Optional[AppError] = probe_error

        try:
            settings = await self._client.settings.get()
            has_valid_session = True
            resolved_role = role_from_settings(settings)
            startup_error = None
        except AppError as e:
            if e.is_auth_error:
                login_required = True
                startup_error = None
            else:
                startup_error = e

        self._persist_role(resolved_role)
        self._update(
            role=resolved_role,
            has_valid_session=has_valid_session,
            login_required=login_required,
            loading=False,
            error=startup_error,
        )

    # =========================================================================
    # Login / Logout
    # =========================================================================

    async def login_as_admin(self, password: str) -> bool:
        return await self._login(
            lambda: self._client.auth.verify_admin_password(password), "Login failed"
        )

    async def login_as_visitor(self, password: str) -> bool:
        return await self._login(
            lambda: self._client.auth.verify_visitor_password(password), "Login failed"
        )

    async def start_passkey_auth(self) -> PasskeyAuthBeginResponse:
        return await self._client.auth.passkeys_authenticate()

    async def login_with_passkey(self, assertion: Mapping[str, Any], challenge: str) -> bool:
        """Verify an assertion produced for ``challenge``."""
        return await self._login(
            lambda: self._client.auth.passkeys_authenticate_verify(dict(assertion), challenge),
            "Passkey login failed",
        )

    async def authenticate_with_passkey(self) -> bool:
        """
        Run the full passkey flow: begin, platform assertion, verify.

        Raises:
            PasskeyClientError: When the platform cannot produce an assertion
        """
        self._update(error=None, wait_time_ms=None)
        try:
            begin = await self.start_passkey_auth()
        except AppError as e:
            self._update(error=e, has_valid_session=False, wait_time_ms=e.wait_time_ms)
            return False

        assertion = await self._passkey_codec.create_assertion(begin.options)
        return await self.login_with_passkey(assertion, begin.challenge)

    async def _login(
        self,
        verify: Callable[[], Awaitable[LoginResponse]],
        failure_message: str,
    ) -> bool:
        self._update(error=None, wait_time_ms=None)
        try:
            result = await verify()
        except AppError as e:
            self._update(error=e, has_valid_session=False, wait_time_ms=e.wait_time_ms)
            return False

        if isinstance(result, LoginSuccess):
            self._persist_role(result.role)
            self._update(
                role=result.role,
                has_valid_session=True,
                error=None,
                wait_time_ms=None,
            )
            return True

        code = login_failure_code(result)
        wait_time_ms = int(result.wait_time) if result.wait_time is not None else None
        self._update(
            has_valid_session=False,
            wait_time_ms=wait_time_ms,
            error=AppError(
                code,
                result.message or failure_message,
                http_status=result.status_code,
                wait_time_ms=wait_time_ms,
            ),
        )
        return False

    async def logout(self) -> None:
        """Sign out locally; the remote call is best-effort."""
        try:
            await self._client.auth.logout()
        except AppError as e:
            logger.debug("Remote logout failed (%s); clearing local session", e.code.value)
        finally:
            self._persist_role(None)
            self._update(role=None, has_valid_session=False, error=None, wait_time_ms=None)

    def clear_error(self) -> None:
        self._update(error=None)

    def _handle_unauthorized(self) -> None:
        self._persist_role(None)
        self._update(role=None, has_valid_session=False)

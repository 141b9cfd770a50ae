"""
MyTube Client
mytube-client

Async client for a MyTube video-library server: classified errors, envelope
unwrapping, retry for reads, deduplicated writes, session bootstrap and
adaptive polling.
"""

from .client import MyTubeClient, create_mytube_client, is_idempotent_method, should_trigger_reauth
from .config import RuntimeBaseUrl, normalize_api_base_url
from .envelope import unwrap
from .errors import (
    AppError,
    AppErrorCode,
    ConfigurationError,
    NO_RETRY_STATUSES,
    is_app_error,
    parse_api_error,
    parse_retry_after_ms,
    should_retry,
)
from .inflight import RequestDeduplicator, build_inflight_key
from .media import MediaUrlResolver
from .passkey import (
    PasskeyAssertionCodec,
    PasskeyClientError,
    PasskeyErrorCode,
    PlatformAuthenticator,
    base64url_decode,
    base64url_encode,
)
from .polling import (
    PollAction,
    PollDecision,
    Poller,
    PollingController,
    PollState,
    jittered_interval_ms,
    retry_delay_ms,
)
from .session import (
    SessionController,
    SessionPhase,
    SessionState,
    can_edit_settings,
    can_mutate,
    is_admin,
    resolve_startup_role,
)
from .storage import BackendUrlStore, FileStorage, MemoryStorage, RoleStore, StorageResult
from .types import (
    ClientConfig,
    CloudSignedUrlResponse,
    DownloadStatusResponse,
    KeyValueStorage,
    LoginFailure,
    LoginResponse,
    LoginSuccess,
    PasskeyAuthBeginResponse,
    PasswordEnabledResponse,
    Role,
)

__version__ = "0.1.0"
__all__ = [
    # Client
    "MyTubeClient",
    "create_mytube_client",
    "is_idempotent_method",
    "should_trigger_reauth",
    "RuntimeBaseUrl",
    "normalize_api_base_url",
    "unwrap",
    "RequestDeduplicator",
    "build_inflight_key",
    "MediaUrlResolver",
    # Types
    "ClientConfig",
    "CloudSignedUrlResponse",
    "DownloadStatusResponse",
    "KeyValueStorage",
    "LoginFailure",
    "LoginResponse",
    "LoginSuccess",
    "PasskeyAuthBeginResponse",
    "PasswordEnabledResponse",
    "Role",
    # Errors
    "AppError",
    "AppErrorCode",
    "ConfigurationError",
    "NO_RETRY_STATUSES",
    "is_app_error",
    "parse_api_error",
    "parse_retry_after_ms",
    "should_retry",
    # Session
    "SessionController",
    "SessionPhase",
    "SessionState",
    "can_edit_settings",
    "can_mutate",
    "is_admin",
    "resolve_startup_role",
    # Passkey
    "PasskeyAssertionCodec",
    "PasskeyClientError",
    "PasskeyErrorCode",
    "PlatformAuthenticator",
    "base64url_decode",
    "base64url_encode",
    # Polling
    "PollAction",
    "PollDecision",
    "Poller",
    "PollingController",
    "PollState",
    "jittered_interval_ms",
    "retry_delay_ms",
    # Storage
    "BackendUrlStore",
    "FileStorage",
    "MemoryStorage",
    "RoleStore",
    "StorageResult",
]

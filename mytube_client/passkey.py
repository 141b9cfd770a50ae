"""
Passkey assertion helper.

Bridges the backend's JSON challenge and a platform WebAuthn authenticator:
base64url fields are decoded to bytes on the way in, and every binary field of
the resulting credential is re-encoded to unpadded base64url on the way out.
The authenticator itself is injected; this module does no cryptography.
"""

import asyncio
import base64
import binascii
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable


class PasskeyErrorCode(str, Enum):
    """Error codes for passkey failures."""
    PASSKEY_NOT_SUPPORTED = "PASSKEY_NOT_SUPPORTED"
    PASSKEY_CANCELLED = "PASSKEY_CANCELLED"
    PASSKEY_INVALID_OPTIONS = "PASSKEY_INVALID_OPTIONS"
    PASSKEY_RUNTIME = "PASSKEY_RUNTIME"


class PasskeyClientError(Exception):
    """Error raised when a passkey assertion cannot be produced."""

    def __init__(self, code: PasskeyErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


# Platform error names that mean the user dismissed or timed out the prompt
CANCELLATION_ERROR_NAMES = frozenset({"NotAllowedError", "AbortError"})


@runtime_checkable
class PlatformAuthenticator(Protocol):
    """Platform capability that produces a WebAuthn assertion."""

    async def get_assertion(self, public_key: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        """
        Return the credential mapping (``id``, ``rawId``, ``type``,
        ``response``, optional ``clientExtensionResults``), or None when the
        user cancelled.
        """
        ...


def base64url_encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def base64url_decode(text: str) -> bytes:
    """Decode base64url text; missing padding is tolerated."""
    stripped = text.strip().rstrip("=")
    return base64.urlsafe_b64decode(stripped + "=" * (-len(stripped) % 4))


def _to_bytes(value: Any) -> Optional[bytes]:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return None


def _encode_field(value: Any, field_name: str) -> str:
    data = _to_bytes(value)
    if data is None:
        raise PasskeyClientError(
            PasskeyErrorCode.PASSKEY_INVALID_OPTIONS,
            f"Passkey response missing {field_name}",
        )
    return base64url_encode(data)


def _decode_field(value: str, field_name: str) -> bytes:
    try:
        return base64url_decode(value)
    except (binascii.Error, ValueError):
        raise PasskeyClientError(
            PasskeyErrorCode.PASSKEY_INVALID_OPTIONS,
            f"Passkey {field_name} is not valid base64url.",
        )


def normalize_public_key_options(options: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert JSON assertion options into the form the authenticator expects.

    Accepts either ``{"publicKey": {...}}`` or the public-key options directly.
    Unknown fields are carried through untouched.
    """
    nested = options.get("publicKey")
    raw = nested if isinstance(nested, Mapping) else options

    challenge = raw.get("challenge")
    if not isinstance(challenge, str):
        raise PasskeyClientError(
            PasskeyErrorCode.PASSKEY_INVALID_OPTIONS,
            "Passkey challenge is missing from options.",
        )

    public_key = dict(raw)
    public_key["challenge"] = _decode_field(challenge, "challenge")

    allow_credentials = raw.get("allowCredentials")
    if isinstance(allow_credentials, list):
        normalized = []
        for entry in allow_credentials:
            if isinstance(entry, Mapping):
                item = dict(entry)
                if isinstance(item.get("id"), str):
                    item["id"] = _decode_field(item["id"], "credential id")
                normalized.append(item)
            else:
                normalized.append(entry)
        public_key["allowCredentials"] = normalized

    return public_key


def _is_cancellation(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    name = getattr(error, "name", None) or type(error).__name__
    return name in CANCELLATION_ERROR_NAMES


def serialize_assertion(credential: Mapping[str, Any]) -> Dict[str, Any]:
    """Re-encode a platform credential into a JSON-safe assertion."""
    response = credential.get("response")
    if not isinstance(response, Mapping):
        response = {}

    result_response: Dict[str, Any] = {
        "authenticatorData": _encode_field(
            response.get("authenticatorData"), "response.authenticatorData"
        ),
        "clientDataJSON": _encode_field(
            response.get("clientDataJSON"), "response.clientDataJSON"
        ),
        "signature": _encode_field(response.get("signature"), "response.signature"),
    }
    if response.get("userHandle") is not None:
        result_response["userHandle"] = _encode_field(
            response.get("userHandle"), "response.userHandle"
        )

    result: Dict[str, Any] = {
        "id": credential.get("id"),
        "rawId": _encode_field(credential.get("rawId"), "rawId"),
        "type": credential.get("type") or "public-key",
        "response": result_response,
    }

    extensions = credential.get("clientExtensionResults")
    if callable(extensions):
        extensions = extensions()
    if extensions is not None:
        result["clientExtensionResults"] = extensions

    return result


class PasskeyAssertionCodec:
    """Produces JSON-safe passkey assertions through a platform authenticator."""

    def __init__(self, authenticator: Optional[PlatformAuthenticator] = None) -> None:
        self._authenticator = authenticator

    def is_supported(self) -> bool:
        """Check if a platform assertion capability is present."""
        return self._authenticator is not None and callable(
            getattr(self._authenticator, "get_assertion", None)
        )

    async def create_assertion(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Run a passkey assertion for the given challenge options.

        Raises:
            PasskeyClientError: With one of the PasskeyErrorCode values
        """
        if not self.is_supported():
            raise PasskeyClientError(
                PasskeyErrorCode.PASSKEY_NOT_SUPPORTED,
                "Passkey is not supported in this app/runtime.",
            )

        try:
            public_key = normalize_public_key_options(options)
            credential = await self._authenticator.get_assertion(public_key)
            if credential is None:
                raise PasskeyClientError(
                    PasskeyErrorCode.PASSKEY_CANCELLED, "Passkey request was cancelled."
                )
            return serialize_assertion(credential)
        except PasskeyClientError:
            raise
        except Exception as error:
            if _is_cancellation(error):
                raise PasskeyClientError(
                    PasskeyErrorCode.PASSKEY_CANCELLED, "Passkey request was cancelled."
                )
            raise PasskeyClientError(
                PasskeyErrorCode.PASSKEY_RUNTIME,
                str(error) or "Passkey authentication failed.",
            )


def is_passkey_client_error(error: Any) -> bool:
    """Check if error is a PasskeyClientError."""
    return isinstance(error, PasskeyClientError)

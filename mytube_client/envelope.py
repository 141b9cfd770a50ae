"""
Response envelope normalization.

The backend returns some endpoints wrapped as ``{"success": true, "data": ...}``
and others bare. Only the successful wrapped shape is unwrapped; everything
else (including ``{"success": false, ...}``) passes through untouched.
"""

from typing import Any, Mapping


def unwrap(raw: Any) -> Any:
    """Return ``raw["data"]`` for a successful envelope, else ``raw`` itself."""
    if isinstance(raw, Mapping) and raw.get("success") is True and "data" in raw:
        return raw["data"]
    return raw

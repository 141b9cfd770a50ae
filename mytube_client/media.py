"""
Media URL resolution.

Videos and thumbnails are served from the host root, not from ``/api``, so
URLs are built against ``RuntimeBaseUrl.host_base``. Paths prefixed with
``cloud:`` need a signed URL from the server; ``mount:`` videos stream through
the mount endpoint. When the backend is reached over HTTPS, cleartext media
URLs are rejected (an empty string is returned).
"""

import re
from typing import Any, Mapping
from urllib.parse import quote

from .config import RuntimeBaseUrl


_ABSOLUTE_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)

CLOUD_PREFIX = "cloud:"
MOUNT_PREFIX = "mount:"

# Characters left unescaped in a URI component
_URI_COMPONENT_SAFE = "!'()*~"


def is_absolute_http_url(path_or_url: str) -> bool:
    return bool(_ABSOLUTE_HTTP_URL.match(path_or_url))


def is_downgraded_cleartext_url(host_base: str, path_or_url: str) -> bool:
    """True for an ``http://`` media URL while the backend host is ``https://``."""
    return host_base.lower().startswith("https://") and path_or_url.lower().startswith("http://")


def _string_field(video: Mapping[str, Any], name: str) -> str:
    value = video.get(name)
    return value if isinstance(value, str) else ""


class MediaUrlResolver:
    """Builds playable media URLs from video payloads against the current host."""

    def __init__(self, base_url: RuntimeBaseUrl) -> None:
        self._base_url = base_url

    def to_absolute_url(self, path_or_url: str) -> str:
        host_base = self._base_url.host_base
        if is_absolute_http_url(path_or_url):
            if is_downgraded_cleartext_url(host_base, path_or_url):
                return ""
            return path_or_url
        separator = "" if path_or_url.startswith("/") else "/"
        return f"{host_base}{separator}{path_or_url}"

    def mount_video_url(self, video_id: str) -> str:
        """Streaming URL for videos stored in a mounted directory."""
        return f"{self._base_url.host_base.rstrip('/')}/api/mount-video/{video_id}"

    def cloud_redirect_url(self, filename: str) -> str:
        """Redirect route for cloud media when signed URLs are unavailable."""
        name = filename.strip()
        if not name:
            return ""
        return self.to_absolute_url(f"/cloud/videos/{quote(name, safe=_URI_COMPONENT_SAFE)}")

    def playback_url(self, video: Mapping[str, Any]) -> str:
        """
        Playback URL for a video payload.

        Prefers ``signedUrl``, then ``videoPath``. Returns an empty string for
        cloud videos (fetch a signed URL instead) and for rejected URLs.
        """
        signed_url = _string_field(video, "signedUrl")
        if signed_url:
            return self.to_absolute_url(signed_url)

        video_path = _string_field(video, "videoPath")
        if not video_path:
            return ""
        if is_absolute_http_url(video_path):
            return self.to_absolute_url(video_path)
        if video_path.startswith(MOUNT_PREFIX):
            video_id = _string_field(video, "id")
            return self.mount_video_url(video_id) if video_id else ""
        if video_path.startswith(CLOUD_PREFIX):
            return ""
        return self.to_absolute_url(video_path)

    def thumbnail_url(self, video: Mapping[str, Any]) -> str:
        """Thumbnail URL: ``signedThumbnailUrl``, ``thumbnailPath``, then ``thumbnailUrl``."""
        signed = _string_field(video, "signedThumbnailUrl")
        if signed:
            return self.to_absolute_url(signed)

        thumbnail_path = _string_field(video, "thumbnailPath")
        if thumbnail_path:
            if is_absolute_http_url(thumbnail_path):
                return self.to_absolute_url(thumbnail_path)
            if thumbnail_path.startswith(CLOUD_PREFIX):
                return ""
            return self.to_absolute_url(thumbnail_path)

        thumbnail_url = _string_field(video, "thumbnailUrl")
        return self.to_absolute_url(thumbnail_url) if thumbnail_url else ""

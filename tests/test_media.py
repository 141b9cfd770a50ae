"""
Tests for media URL resolution.
"""

import pytest

from mytube_client import ClientConfig, MediaUrlResolver, MyTubeClient, RuntimeBaseUrl


@pytest.fixture
def https_media() -> MediaUrlResolver:
    return MediaUrlResolver(RuntimeBaseUrl("https://tube.example.com/api"))


@pytest.fixture
def http_media() -> MediaUrlResolver:
    return MediaUrlResolver(RuntimeBaseUrl("http://192.168.1.20:5551"))


class TestPlaybackUrl:
    """Tests for MediaUrlResolver.playback_url."""

    def test_signed_url_preferred(self, https_media):
        video = {
            "id": "v1",
            "signedUrl": "https://cdn.example.com/v1.mp4?sig=abc",
            "videoPath": "/videos/v1.mp4",
        }

        assert https_media.playback_url(video) == "https://cdn.example.com/v1.mp4?sig=abc"

    def test_relative_path_joined_to_host(self, https_media):
        video = {"id": "v1", "videoPath": "/videos/v1.mp4"}

        assert https_media.playback_url(video) == "https://tube.example.com/videos/v1.mp4"

    def test_path_without_leading_slash(self, http_media):
        assert http_media.playback_url({"videoPath": "videos/a.mp4"}) == "http://192.168.1.20:5551/videos/a.mp4"

    @pytest.mark.parametrize("url", ["http://cdn.example.com/v1.mp4", "HTTP://cdn.example.com/v1.mp4"])
    def test_cleartext_signed_url_rejected_on_https_host(self, https_media, url):
        assert https_media.playback_url({"signedUrl": url}) == ""

    def test_cleartext_video_path_rejected_on_https_host(self, https_media):
        assert https_media.playback_url({"videoPath": "http://cdn.example.com/v1.mp4"}) == ""

    def test_cleartext_allowed_on_http_host(self, http_media):
        video = {"signedUrl": "http://cdn.example.com/v1.mp4"}

        assert http_media.playback_url(video) == "http://cdn.example.com/v1.mp4"

    def test_mount_video(self, https_media):
        video = {"id": "v9", "videoPath": "mount:/media/movies/v9.mkv"}

        assert https_media.playback_url(video) == "https://tube.example.com/api/mount-video/v9"

    def test_mount_video_without_id(self, https_media):
        assert https_media.playback_url({"videoPath": "mount:/media/v.mkv"}) == ""

    def test_cloud_video_needs_signed_url(self, https_media):
        assert https_media.playback_url({"id": "v1", "videoPath": "cloud:v1.mp4"}) == ""

    @pytest.mark.parametrize("video", [{}, {"videoPath": None}, {"videoPath": 42}, {"signedUrl": ""}])
    def test_missing_or_malformed_fields(self, https_media, video):
        assert https_media.playback_url(video) == ""


class TestThumbnailUrl:
    """Tests for MediaUrlResolver.thumbnail_url."""

    def test_signed_thumbnail_preferred(self, https_media):
        video = {
            "signedThumbnailUrl": "https://cdn.example.com/t.jpg?sig=1",
            "thumbnailPath": "/images/t.jpg",
        }

        assert https_media.thumbnail_url(video) == "https://cdn.example.com/t.jpg?sig=1"

    def test_thumbnail_path(self, https_media):
        assert https_media.thumbnail_url({"thumbnailPath": "/images/t.jpg"}) == "https://tube.example.com/images/t.jpg"

    def test_cloud_thumbnail(self, https_media):
        assert https_media.thumbnail_url({"thumbnailPath": "cloud:t.jpg"}) == ""

    def test_thumbnail_url_fallback(self, https_media):
        video = {"thumbnailUrl": "https://i.ytimg.com/vi/x/hqdefault.jpg"}

        assert https_media.thumbnail_url(video) == "https://i.ytimg.com/vi/x/hqdefault.jpg"

    def test_cleartext_thumbnail_rejected_on_https_host(self, https_media):
        assert https_media.thumbnail_url({"thumbnailUrl": "http://i.ytimg.com/x.jpg"}) == ""

    def test_no_thumbnail(self, https_media):
        assert https_media.thumbnail_url({}) == ""


class TestCloudRedirectUrl:
    """Tests for MediaUrlResolver.cloud_redirect_url."""

    def test_filename_encoded_as_single_component(self, https_media):
        assert (
            https_media.cloud_redirect_url("folder/video 1.mp4")
            == "https://tube.example.com/cloud/videos/folder%2Fvideo%201.mp4"
        )

    def test_blank_filename(self, https_media):
        assert https_media.cloud_redirect_url("   ") == ""


class TestClientMedia:
    """Tests for the client's media resolver."""

    def test_follows_base_url_changes(self):
        client = MyTubeClient(ClientConfig(base_url="http://old-host:5551/api"))

        assert client.media.playback_url({"videoPath": "/videos/a.mp4"}) == "http://old-host:5551/videos/a.mp4"

        client.base_url.set("https://new-host.example.com")

        assert client.media.playback_url({"videoPath": "/videos/a.mp4"}) == "https://new-host.example.com/videos/a.mp4"
        assert client.media.playback_url({"signedUrl": "http://cdn/a.mp4"}) == ""

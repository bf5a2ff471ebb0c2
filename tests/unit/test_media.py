"""Unit tests for project media storage."""

import base64

import httpx
import pytest

from cutroom.common.errors import CutroomError, InvalidRequestError, ProviderError
from cutroom.generation.media import (
    MAX_REFERENCE_BYTES,
    LocalMediaStore,
    decode_image_result,
    image_mime_type,
    to_data_url,
)
from cutroom.providers.retry import RetryPolicy, is_fal_retryable

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


@pytest.fixture
def make_store(tmp_path, mock_http, sleeps):
    """LocalMediaStore over tmp_path whose downloads hit a handler."""

    def build(handler=None):
        handler = handler or (lambda request: httpx.Response(404))
        policy = RetryPolicy(
            name="media",
            max_attempts=3,
            backoff=(1.5, 3.0),
            is_retryable=is_fal_retryable,
            sleep=sleeps,
        )
        return LocalMediaStore(tmp_path, http_client=mock_http(handler), download_policy=policy)

    return build


class TestImageResults:
    """Tests for image result decoding helpers."""

    def test_decode_data_url(self):
        """Test data URL decoding."""
        assert decode_image_result(PNG_DATA_URL) == PNG_BYTES

    def test_decode_bare_base64(self):
        """Test bare base64 payloads, including wrapped lines."""
        encoded = base64.b64encode(PNG_BYTES).decode()

        assert decode_image_result(encoded) == PNG_BYTES
        assert decode_image_result(encoded[:8] + "\n" + encoded[8:]) == PNG_BYTES

    def test_decode_rejects_urls_and_garbage(self):
        """Test that remote URLs and invalid payloads are not decoded."""
        assert decode_image_result("https://cdn.example.com/a.png") is None
        assert decode_image_result("not base64!") is None

    def test_mime_types(self):
        """Test extension-based MIME detection."""
        assert image_mime_type("a.PNG") == "image/png"
        assert image_mime_type("a.webp") == "image/webp"
        assert image_mime_type("a.jpeg") == "image/jpeg"
        assert image_mime_type("a") == "image/jpeg"
        assert to_data_url(b"abc", "image/png") == "data:image/png;base64,YWJj"


class TestLocalMediaStore:
    """Tests for LocalMediaStore."""

    @pytest.mark.asyncio
    async def test_save_image_from_data_url(self, make_store, tmp_path):
        """Test writing an inline image under the shot directory."""
        store = make_store()

        name = await store.save_image("p1", "shot_1", PNG_DATA_URL)

        assert name.startswith("gen_") and name.endswith(".png")
        path = tmp_path / "p1" / "shots" / "shot_1" / "generated" / name
        assert path.read_bytes() == PNG_BYTES

    @pytest.mark.asyncio
    async def test_save_image_names_are_unique(self, make_store):
        """Test that two saves in the same millisecond do not collide."""
        store = make_store()

        first = await store.save_image("p1", "shot_1", PNG_DATA_URL, prefix="enh")
        second = await store.save_image("p1", "shot_1", PNG_DATA_URL, prefix="enh")

        assert first.startswith("enh_")
        assert first != second

    @pytest.mark.asyncio
    async def test_save_image_downloads_url(self, make_store, tmp_path):
        """Test downloading a remote image result."""
        store = make_store(lambda request: httpx.Response(200, content=PNG_BYTES))

        name = await store.save_image("p1", "shot_1", "https://cdn.example.com/out.png")

        assert (tmp_path / "p1" / "shots" / "shot_1" / "generated" / name).read_bytes() == PNG_BYTES

    @pytest.mark.asyncio
    async def test_transient_image_download_failure_keeps_url(self, make_store, sleeps):
        """Test that the URL is stored when the download keeps failing."""
        store = make_store(lambda request: httpx.Response(503))
        url = "https://cdn.example.com/out.png"

        assert await store.save_image("p1", "shot_1", url) == url
        assert sleeps.calls == [1.5, 3.0]

    @pytest.mark.asyncio
    async def test_permanent_image_download_failure_raises(self, make_store):
        """Test that a 404 is an error, not a stored URL."""
        store = make_store(lambda request: httpx.Response(404))

        with pytest.raises(ProviderError) as exc_info:
            await store.save_image("p1", "shot_1", "https://cdn.example.com/gone.png")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_unrecognized_image_result(self, make_store):
        """Test that unusable provider output is reported."""
        with pytest.raises(CutroomError, match="Unrecognized image result"):
            await make_store().save_image("p1", "shot_1", "not an image!")

    @pytest.mark.asyncio
    async def test_save_video(self, make_store, tmp_path):
        """Test downloading a video under the shot directory."""
        store = make_store(lambda request: httpx.Response(200, content=b"mp4"))

        name = await store.save_video("p1", "shot_1", "https://cdn.example.com/v.mp4")

        assert name.startswith("vid_") and name.endswith(".mp4")
        assert (tmp_path / "p1" / "shots" / "shot_1" / "video" / name).read_bytes() == b"mp4"

    @pytest.mark.asyncio
    async def test_video_download_failure_keeps_url(self, make_store):
        """Test that any download failure falls back to the remote URL."""
        store = make_store(lambda request: httpx.Response(403))
        url = "https://cdn.example.com/v.mp4"

        assert await store.save_video("p1", "shot_1", url) == url

    @pytest.mark.asyncio
    async def test_load_image(self, make_store, tmp_path):
        """Test that local files become data URLs and remote refs pass through."""
        store = make_store()
        directory = tmp_path / "p1" / "shots" / "shot_1" / "generated"
        directory.mkdir(parents=True)
        (directory / "gen_1.png").write_bytes(PNG_BYTES)

        assert await store.load_image("p1", "shot_1", "gen_1.png") == PNG_DATA_URL
        assert await store.load_image("p1", "shot_1", "https://x/a.png") == "https://x/a.png"

    @pytest.mark.asyncio
    async def test_load_missing_image(self, make_store):
        """Test that a missing source image is an invalid request."""
        with pytest.raises(InvalidRequestError, match="gen_9.png"):
            await make_store().load_image("p1", "shot_1", "gen_9.png")

    @pytest.mark.asyncio
    async def test_load_references_skips_unusable_files(self, make_store, tmp_path):
        """Test that svg, missing and oversized references are skipped."""
        store = make_store()
        images = tmp_path / "p1" / "brief" / "images"
        images.mkdir(parents=True)
        (images / "plan.png").write_bytes(PNG_BYTES)
        (images / "logo.svg").write_bytes(b"<svg/>")
        (images / "huge.jpg").write_bytes(b"\0" * (MAX_REFERENCE_BYTES + 1))

        refs = await store.load_references(
            "p1", ["plan.png", "logo.svg", "missing.png", "huge.jpg", "../brief/images/plan.png"]
        )

        assert refs == [PNG_DATA_URL, PNG_DATA_URL]

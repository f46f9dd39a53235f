"""Tests for the content-addressable image cache."""

import asyncio

import httpx
import pytest

from wholesale.core.exceptions import BadImageAsset, FetchError
from wholesale.detail.models import DetailRecord, Supplier
from wholesale.images.cache import BadHashRegistry, ImageCache, image_key, referer_for, sniff_extension

from .conftest import JPEG, ImageServer

GOOD_URL = "https://s.alicdn.com/kf/good_960x960.jpg"
OTHER_URL = "https://s.alicdn.com/kf/other_960x960.jpg"
DENIED_URL = "https://s.alicdn.com/kf/placeholder_960x960.jpg"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2000


def make_cache(tmp_path, server, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return ImageCache(tmp_path / "cache", client, **kwargs)


# ============================================================================
# TESTS: HELPERS
# ============================================================================

class TestHelpers:
    """Tests for key derivation and format sniffing."""

    def test_image_key_is_sha1(self):
        key = image_key(GOOD_URL)
        assert len(key) == 40
        assert key == image_key(GOOD_URL)
        assert key != image_key(OTHER_URL)

    def test_sniff_extension(self):
        assert sniff_extension(JPEG) == "jpg"
        assert sniff_extension(PNG) == "png"
        assert sniff_extension(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "webp"
        assert sniff_extension(b"<html>") is None

    def test_referer_for_cdn_hosts(self):
        assert referer_for(GOOD_URL) == "https://www.alibaba.com/"
        assert referer_for("https://5.imimg.com/data5/a.jpg") == "https://dir.indiamart.com/"
        assert referer_for("https://example.com/a.jpg") is None

    def test_registry_rejects_non_digest(self):
        registry = BadHashRegistry()
        with pytest.raises(ValueError, match="SHA1"):
            registry.add("not-a-hash")
        registry.add(image_key(DENIED_URL).upper())
        assert image_key(DENIED_URL) in registry


# ============================================================================
# TESTS: RESOLVE
# ============================================================================

class TestResolve:
    """Tests for ImageCache.resolve()."""

    async def test_deny_listed_and_good_resolved_concurrently(self, tmp_path):
        """A deny-listed URL never reaches the network; the good one downloads once."""
        server = ImageServer()
        cache = make_cache(tmp_path, server, bad_hashes=BadHashRegistry([image_key(DENIED_URL)]))

        results = await asyncio.gather(
            cache.resolve(DENIED_URL),
            cache.resolve(GOOD_URL),
            cache.resolve(GOOD_URL),
            return_exceptions=True,
        )

        assert isinstance(results[0], BadImageAsset)
        assert results[0].reason == "deny-listed"
        assert results[1] == results[2]
        assert results[1].local_path.name == f"{image_key(GOOD_URL)}.jpg"
        assert results[1].local_path.read_bytes() == JPEG
        assert cache.downloads == 1
        assert server.requests == [GOOD_URL]

    async def test_cached_file_reused_across_instances(self, tmp_path):
        server = ImageServer()
        await make_cache(tmp_path, server).resolve(GOOD_URL)

        second = make_cache(tmp_path, server)
        entry = await second.resolve("//s.alicdn.com/kf/good_960x960.jpg")

        assert entry.content_type == "image/jpeg"
        assert second.downloads == 0
        assert len(server.requests) == 1

    async def test_corrupt_cached_file_is_downloaded_again(self, tmp_path):
        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        corrupt = cache_dir / f"{image_key(GOOD_URL)}.jpg"
        corrupt.write_bytes(b"truncated")
        cache = make_cache(tmp_path, ImageServer())

        entry = await cache.resolve(GOOD_URL)

        assert cache.downloads == 1
        assert entry.local_path.read_bytes() == JPEG

    async def test_extension_follows_content(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(body=PNG, content_type="image/png"))
        entry = await cache.resolve(GOOD_URL)
        assert entry.filename.endswith(".png")
        assert cache.public_path(entry) == f"/cache/{image_key(GOOD_URL)}.png"

    async def test_placeholder_url_rejected(self, tmp_path):
        server = ImageServer()
        cache = make_cache(tmp_path, server)
        with pytest.raises(BadImageAsset, match="placeholder"):
            await cache.resolve("https://s.alicdn.com/kf/icon_50x50.jpg")
        assert server.requests == []

    async def test_relative_url_without_base_rejected(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer())
        with pytest.raises(BadImageAsset):
            await cache.resolve("/img/a.jpg")

    async def test_oversized_rejected(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(), max_bytes=100, min_bytes=10)
        with pytest.raises(BadImageAsset, match="exceeds"):
            await cache.resolve(GOOD_URL)
        assert cache.downloads == 0
        assert not (tmp_path / "cache").exists()

    async def test_undersized_rejected(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(body=b"\xff\xd8\xff\xe0"))
        with pytest.raises(BadImageAsset, match="only 4 bytes"):
            await cache.resolve(GOOD_URL)

    async def test_non_image_content_type_rejected(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(body=b"<html>" * 500, content_type="text/html"))
        with pytest.raises(BadImageAsset, match="content type text/html"):
            await cache.resolve(GOOD_URL)

    async def test_unrecognized_bytes_rejected(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(body=b"\x00" * 2000))
        with pytest.raises(BadImageAsset, match="unrecognized"):
            await cache.resolve(GOOD_URL)

    @pytest.mark.parametrize(
        "body, content_type, suffix",
        [
            (b"BM" + b"\x00" * 2000, "image/bmp", ".bmp"),
            (b'<svg xmlns="http://www.w3.org/2000/svg">' + b" " * 2000 + b"</svg>", "image/svg+xml", ".svg"),
        ],
    )
    async def test_extension_from_content_type(self, tmp_path, body, content_type, suffix):
        server = ImageServer(body=body, content_type=content_type)

        entry = await make_cache(tmp_path, server).resolve(GOOD_URL)
        assert entry.local_path.suffix == suffix
        assert entry.content_type == content_type

        again = await make_cache(tmp_path, server).resolve(GOOD_URL)
        assert again.local_path == entry.local_path
        assert len(server.requests) == 1

    async def test_http_failure_is_fetch_error(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(status=404))
        with pytest.raises(FetchError):
            await cache.resolve(GOOD_URL)
        assert await cache.try_resolve(GOOD_URL) is None


# ============================================================================
# TESTS: LOCALIZE AND PURGE
# ============================================================================

class TestLocalize:
    """Tests for record localization and purging."""

    async def test_localize_rewrites_and_drops_bad(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(), bad_hashes=BadHashRegistry([image_key(DENIED_URL)]))
        record = DetailRecord(
            title="Socks",
            hero_image=DENIED_URL,
            gallery=[DENIED_URL, GOOD_URL, "https://s.alicdn.com/kf/thumb_50x50.jpg", OTHER_URL],
            supplier=Supplier(name="Yiwu Socks Co.", logo=None),
        )

        localized = await cache.localize(record)

        good = f"/cache/{image_key(GOOD_URL)}.jpg"
        other = f"/cache/{image_key(OTHER_URL)}.jpg"
        assert localized.gallery == [good, other]
        assert localized.hero_image == good
        assert localized.supplier.name == "Yiwu Socks Co."
        assert localized.title == "Socks"

    async def test_localize_is_idempotent(self, tmp_path):
        server = ImageServer()
        cache = make_cache(tmp_path, server)
        once = await cache.localize(DetailRecord(hero_image=GOOD_URL, gallery=[GOOD_URL]))
        twice = await cache.localize(once)

        assert twice == once
        assert len(server.requests) == 1

    async def test_localize_keeps_url_when_download_fails(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer(status=503))
        localized = await cache.localize(DetailRecord(hero_image=GOOD_URL))
        assert localized.hero_image == GOOD_URL

    async def test_purge_bad_removes_newly_denied(self, tmp_path):
        cache = make_cache(tmp_path, ImageServer())
        good = await cache.resolve(GOOD_URL)
        other = await cache.resolve(OTHER_URL)

        cache.bad_hashes.add(good.key)

        assert await cache.purge_bad() == 1
        assert not good.local_path.exists()
        assert other.local_path.exists()
        with pytest.raises(BadImageAsset):
            await cache.resolve(GOOD_URL)

"""Content-addressable image cache.

Every external image URL is normalized, hashed with SHA1 and stored as
``<sha1>.<ext>`` under the cache directory. Entries are immutable; a file
is only removed when its key is later deny-listed (``purge_bad``).
"""

import asyncio
import hashlib
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union
from urllib.parse import urlsplit

import httpx
import structlog

from wholesale.core.exceptions import BadImageAsset, FetchError, WholesaleError
from wholesale.detail.models import DetailRecord
from wholesale.scrapers.strategy import status_error, to_fetch_error
from wholesale.scrapers.utils.normalizer import is_likely_bad_image_url, normalize_image_url
from wholesale.scrapers.utils.user_agents import default_headers

logger = structlog.get_logger(__name__)

# Known placeholder assets (URL hashes) served in place of real product photos
BUILTIN_BAD_HASHES = frozenset(
    {
        "4e70cc58277297de2d4741c437c9dc425c4f8adb",
        "e7cc244e1d0f558ae9669f57b973758bc14103ee",
    }
)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/avif": "avif",
    "image/bmp": "bmp",
    "image/x-ms-bmp": "bmp",
    "image/svg+xml": "svg",
}

EXTENSION_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "avif": "image/avif",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
}

# Formats whose bytes sniff_extension can verify
SNIFFED_EXTENSIONS = frozenset({"jpg", "png", "webp", "gif", "avif"})

# CDN hosts that refuse hotlinked requests without the marketplace referer
_REFERERS = (
    ("alicdn", "https://www.alibaba.com/"),
    ("alibaba", "https://www.alibaba.com/"),
    ("made-in-china", "https://www.made-in-china.com/"),
    ("micstatic", "https://www.made-in-china.com/"),
    ("imimg", "https://dir.indiamart.com/"),
    ("indiamart", "https://dir.indiamart.com/"),
)


def image_key(url: str) -> str:
    """SHA1 hex digest of a normalized image URL."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


def sniff_extension(data: bytes) -> Optional[str]:
    """Image format from magic bytes, or None if unrecognized."""
    if data[:3] == b"\xff\xd8\xff":
        return "jpg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data[4:12] in (b"ftypavif", b"ftypavis"):
        return "avif"
    return None


def referer_for(url: str) -> Optional[str]:
    host = urlsplit(url).netloc.lower()
    for marker, referer in _REFERERS:
        if marker in host:
            return referer
    return None


def is_placeholder_url(url: str) -> bool:
    """Transparent spacers and icon-sized assets that are never product photos."""
    lowered = url.lower()
    if "micstatic.com" in lowered and "/common/img/space.png" in lowered:
        return True
    return is_likely_bad_image_url(url)


@dataclass(frozen=True)
class CacheEntry:
    """One cached image. ``key`` is the SHA1 of the normalized source URL."""

    key: str
    local_path: Path
    content_type: str

    @property
    def filename(self) -> str:
        return self.local_path.name


class BadHashRegistry:
    """Append-only set of deny-listed image keys."""

    def __init__(self, hashes: Iterable[str] = ()):
        self._hashes = set(BUILTIN_BAD_HASHES)
        for value in hashes:
            self.add(value)

    def add(self, value: str) -> None:
        value = value.strip().lower()
        if len(value) != 40 or any(c not in "0123456789abcdef" for c in value):
            raise ValueError(f"Not a SHA1 hex digest: {value!r}")
        self._hashes.add(value)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, str) and value.lower() in self._hashes

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._hashes))

    def __len__(self) -> int:
        return len(self._hashes)


class ImageCache:
    """Resolves external image URLs to local files, downloading each at most once.

    Concurrent ``resolve`` calls for the same key share one in-flight
    download. Files are written to a temporary name and renamed into
    place off the event loop, so a reader never sees a partial image.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        http_client: httpx.AsyncClient,
        bad_hashes: Optional[BadHashRegistry] = None,
        max_bytes: int = 5 * 1024 * 1024,
        min_bytes: int = 1000,
        url_prefix: str = "/cache",
        timeout: float = 20.0,
    ):
        self.cache_dir = Path(cache_dir)
        self.http_client = http_client
        self.bad_hashes = bad_hashes or BadHashRegistry()
        self.max_bytes = max_bytes
        self.min_bytes = min_bytes
        self.url_prefix = url_prefix.rstrip("/")
        self.timeout = timeout
        self._pending: Dict[str, "asyncio.Future[CacheEntry]"] = {}
        self.downloads = 0

    def public_path(self, entry: CacheEntry) -> str:
        """Reference stored in records and served to clients."""
        return f"{self.url_prefix}/{entry.filename}"

    async def resolve(self, url: str, base_url: Optional[str] = None) -> CacheEntry:
        """Return the cache entry for ``url``, downloading it if needed.

        Raises:
            BadImageAsset: Deny-listed, placeholder, oversized, undersized or non-image
            FetchError: The download itself failed
        """
        normalized = normalize_image_url(url, base_url)
        if not normalized or not normalized.startswith(("http://", "https://")):
            raise BadImageAsset(str(url), "not an absolute image URL")

        key = image_key(normalized)
        if key in self.bad_hashes:
            raise BadImageAsset(normalized, "deny-listed")
        if is_placeholder_url(normalized):
            raise BadImageAsset(normalized, "placeholder asset")

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_or_download(key, normalized))
            self._pending[key] = task
            task.add_done_callback(lambda _task, key=key: self._pending.pop(key, None))
        return await asyncio.shield(task)

    async def try_resolve(self, url: str, base_url: Optional[str] = None) -> Optional[CacheEntry]:
        """Like ``resolve`` but returns None on any failure."""
        try:
            return await self.resolve(url, base_url)
        except (WholesaleError, OSError) as e:
            logger.info("image_resolve_failed", url=url, error=str(e))
            return None

    async def localize(self, record: DetailRecord, base_url: Optional[str] = None) -> DetailRecord:
        """Rewrite a record's image URLs to cached references.

        Deny-listed and otherwise bad images are dropped. Images that
        could not be downloaded right now keep their original URL.
        """
        gallery_urls = list(record.gallery)
        results = await asyncio.gather(
            self._localize_one(record.hero_image, base_url),
            self._localize_one(record.supplier.logo, base_url),
            *(self._localize_one(url, base_url) for url in gallery_urls),
        )
        hero, logo, gallery_results = results[0], results[1], results[2:]

        gallery: List[str] = []
        for value in gallery_results:
            if value and value not in gallery:
                gallery.append(value)
        if hero is None and gallery:
            hero = gallery[0]

        return replace(
            record,
            hero_image=hero,
            gallery=gallery,
            supplier=replace(record.supplier, logo=logo),
        )

    async def _localize_one(self, url: Optional[str], base_url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        if url.startswith(f"{self.url_prefix}/"):
            return url
        try:
            entry = await self.resolve(url, base_url)
        except BadImageAsset as e:
            logger.info("image_dropped", url=url, reason=e.reason)
            return None
        except (FetchError, OSError) as e:
            logger.warning("image_localize_deferred", url=url, error=str(e))
            return url
        return self.public_path(entry)

    async def purge_bad(self) -> int:
        """Delete cached files whose keys were deny-listed after caching.

        Returns:
            Number of files removed
        """
        removed = await asyncio.to_thread(self._purge_bad_sync)
        logger.info("image_cache_purged", removed=removed)
        return removed

    def _purge_bad_sync(self) -> int:
        if not self.cache_dir.is_dir():
            return 0
        removed = 0
        for path in self.cache_dir.iterdir():
            if path.is_file() and path.stem in self.bad_hashes:
                path.unlink()
                removed += 1
        return removed

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        for ext, content_type in EXTENSION_CONTENT_TYPES.items():
            path = self.cache_dir / f"{key}.{ext}"
            if not path.is_file():
                continue
            with path.open("rb") as fh:
                header = fh.read(16)
            if ext not in SNIFFED_EXTENSIONS or sniff_extension(header) == ext:
                return CacheEntry(key=key, local_path=path, content_type=content_type)
            # Truncated or mislabelled file from an older writer
            logger.warning("image_cache_entry_corrupt", key=key, path=str(path))
            path.unlink()
        return None

    async def _load_or_download(self, key: str, url: str) -> CacheEntry:
        entry = await asyncio.to_thread(self._lookup, key)
        if entry is not None:
            return entry
        return await self._download(key, url)

    async def _download(self, key: str, url: str) -> CacheEntry:
        headers = default_headers(referer=referer_for(url))
        headers["Accept"] = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"

        try:
            async with self.http_client.stream(
                "GET", url, headers=headers, follow_redirects=True, timeout=self.timeout
            ) as response:
                error = status_error(url, response.status_code)
                if error:
                    raise error

                content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if content_type and not content_type.startswith("image/"):
                    raise BadImageAsset(url, f"content type {content_type}")
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise BadImageAsset(url, f"declared size {declared} exceeds {self.max_bytes} bytes")

                chunks = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise BadImageAsset(url, f"exceeds {self.max_bytes} bytes")
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise to_fetch_error(e, url) from e

        data = b"".join(chunks)
        if len(data) < self.min_bytes:
            raise BadImageAsset(url, f"only {len(data)} bytes")

        ext = sniff_extension(data)
        if ext is None:
            # Formats without a magic-byte check are taken from the content type
            ext = CONTENT_TYPE_EXTENSIONS.get(content_type)
            if ext is None or ext in SNIFFED_EXTENSIONS:
                raise BadImageAsset(url, "unrecognized image format")

        path = await asyncio.to_thread(self._write_atomic, key, ext, data)
        self.downloads += 1
        logger.info("image_cached", key=key, url=url, bytes=len(data), path=str(path))
        return CacheEntry(key=key, local_path=path, content_type=EXTENSION_CONTENT_TYPES.get(ext, content_type))

    def _write_atomic(self, key: str, ext: str, data: bytes) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / f"{key}.{ext}"
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return target

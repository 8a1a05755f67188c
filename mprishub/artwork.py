# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
CoverArtCache - resolves a track's artwork URL to a local JPEG file.

Each URL maps deterministically to ``<cache_dir>/<sha256(url)>.jpg``.  The
first resolve() for a URL downloads (http/https) or copies (file://) the
image, normalises it to JPEG with Pillow and writes it atomically; later
calls are a dict lookup.  Concurrent resolve() calls for one URL share a
single in-flight fetch.  Failures are reported to every waiter and are not
remembered, so the next resolve() retries.

Entries live for the process lifetime; there is no eviction.
"""

import asyncio
import hashlib
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from urllib.parse import unquote, urlparse

import aiohttp
from PIL import Image, UnidentifiedImageError

log = logging.getLogger(__name__)

MAX_ARTWORK_BYTES = 500 * 1024  # re-encode at lower quality above this
MAX_ARTWORK_DIMENSION = 600     # pixels, longest side
FETCH_TIMEOUT = 10              # seconds

# Shared thread pool for CPU-bound image processing and file writes
_artwork_executor = ThreadPoolExecutor(max_workers=2)


class ArtworkError(Exception):
    """Artwork could not be fetched, decoded or stored."""


def _process_image(image_bytes: bytes, max_dimension: int, max_bytes: int) -> bytes:
    """Convert raw image bytes to (possibly downscaled) JPEG bytes.

    Runs in a thread pool (CPU-bound).
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Image.DecompressionBombError as e:
        raise ArtworkError(f"Image too large: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ArtworkError(f"Undecodable image: {e}") from e

    if image.mode != "RGB":
        image = image.convert("RGB")
    image.thumbnail((max_dimension, max_dimension))

    buf = BytesIO()
    image.save(buf, "JPEG", quality=85)
    if buf.tell() > max_bytes:
        buf = BytesIO()
        image.save(buf, "JPEG", quality=60)
    return buf.getvalue()


def _write_atomic(path: str, data: bytes) -> None:
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class CoverArtCache:

    def __init__(self, cache_dir: str, *, timeout: float = FETCH_TIMEOUT,
                 max_dimension: int = MAX_ARTWORK_DIMENSION,
                 max_bytes: int = MAX_ARTWORK_BYTES,
                 session: aiohttp.ClientSession | None = None):
        self.cache_dir = cache_dir
        self.timeout = timeout
        self.max_dimension = max_dimension
        self.max_bytes = max_bytes
        self._session = session
        self._owns_session = session is None
        self._paths: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def __contains__(self, url: str) -> bool:
        return url in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def cache_path(self, url: str) -> str:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return os.path.join(self.cache_dir, f"{digest}.jpg")

    def is_fetching(self, url: str) -> bool:
        return url in self._inflight

    async def resolve(self, url: str) -> str:
        """Return the local path for *url*, fetching it at most once at a time.

        Raises ArtworkError on failure.
        """
        cached = self._paths.get(url)
        if cached is not None:
            return cached

        task = self._inflight.get(url)
        if task is None:
            path = self.cache_path(url)
            if os.path.exists(path):
                log.debug("Artwork already on disk for %s", url)
                self._paths[url] = path
                return path
            task = asyncio.ensure_future(self._fetch(url, path))
            self._inflight[url] = task
            task.add_done_callback(lambda t, u=url: self._fetch_done(u, t))
        else:
            log.debug("Joining in-flight artwork fetch for %s", url)

        # Shield: a cancelled waiter must not cancel the fetch other waiters share.
        return await asyncio.shield(task)

    def _fetch_done(self, url: str, task: asyncio.Task):
        self._inflight.pop(url, None)
        if task.cancelled() or task.exception() is not None:
            return
        self._paths[url] = task.result()
        log.info("Cached artwork for %s (%d items in cache)", url, len(self._paths))

    async def _fetch(self, url: str, path: str) -> str:
        scheme = urlparse(url).scheme.lower()
        if scheme in ("http", "https"):
            image_bytes = await self._download(url)
        elif scheme == "file":
            image_bytes = await self._read_local(url)
        else:
            raise ArtworkError(f"Unsupported artwork URL scheme '{scheme}'")

        if not image_bytes:
            raise ArtworkError(f"Artwork URL returned 0 bytes: {url}")

        loop = asyncio.get_running_loop()
        try:
            jpeg = await loop.run_in_executor(
                _artwork_executor, _process_image, image_bytes,
                self.max_dimension, self.max_bytes)
            await loop.run_in_executor(_artwork_executor, _write_atomic, path, jpeg)
        except OSError as e:
            raise ArtworkError(f"Cannot store artwork {path}: {e}") from e
        return path

    async def _download(self, url: str) -> bytes:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        try:
            async with self._session.get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                resp.raise_for_status()
                return await resp.read()
        except asyncio.TimeoutError as e:
            raise ArtworkError(f"Timed out fetching {url}") from e
        except aiohttp.ClientError as e:
            raise ArtworkError(f"Error fetching {url}: {e}") from e

    async def _read_local(self, url: str) -> bytes:
        source = unquote(urlparse(url).path)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(_artwork_executor, _read_file, source)
        except OSError as e:
            raise ArtworkError(f"Cannot read {source}: {e}") from e

    async def close(self):
        for task in list(self._inflight.values()):
            task.cancel()
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

"""Object storage for cropped face images."""

import time
import logging
from pathlib import Path
from typing import Optional, Dict, Tuple, Callable, Protocol
from urllib.parse import quote

logger = logging.getLogger(__name__)


class ImageStorage(Protocol):
    """Operations the engine needs from an object store."""

    def delete(self, path: str) -> None:
        """Delete a stored image. Deleting a missing image is not an error."""
        ...

    def url_for(self, path: str) -> str:
        """Return a URL the UI can load the image from."""
        ...


class ImageUrlCache:
    """
    Path-keyed cache of image URLs with a bounded lifetime.

    Owned by a storage instance; entries expire ``ttl_seconds`` after they
    were stored. Expired entries are dropped on read and whenever a new
    entry is stored.
    """

    def __init__(self, ttl_seconds: float = 900.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    def get(self, path: str) -> Optional[str]:
        """Get a cached URL, evicting it if expired."""
        entry = self._entries.get(path)
        if entry is None:
            return None

        url, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[path]
            return None
        return url

    def put(self, path: str, url: str) -> None:
        now = self._clock()
        self._purge_expired(now)
        self._entries[path] = (url, now)

    def _purge_expired(self, now: float) -> None:
        expired = [
            path for path, (_, stored_at) in self._entries.items()
            if now - stored_at > self.ttl_seconds
        ]
        for path in expired:
            del self._entries[path]

    def invalidate(self, path: str) -> None:
        self._entries.pop(path, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class LocalImageStorage:
    """
    Image storage on the local filesystem.

    Paths are relative to ``root``; URLs are built from ``base_url`` when
    given, else ``file://`` URLs are returned.
    """

    def __init__(
        self,
        root: str | Path,
        base_url: Optional[str] = None,
        url_ttl_seconds: float = 900.0
    ):
        """
        Initialize the storage.

        Args:
            root: Directory holding the images
            base_url: Public URL prefix for served images
            url_ttl_seconds: Lifetime of cached URLs
        """
        self.root = Path(root)
        self.base_url = base_url.rstrip('/') if base_url else None
        self.url_cache = ImageUrlCache(ttl_seconds=url_ttl_seconds)

    def _resolve(self, path: str) -> Path:
        """Resolve a storage path, refusing paths that escape the root."""
        root = self.root.resolve()
        full = (root / path).resolve()
        if full != root and root not in full.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    def save(self, path: str, data: bytes) -> str:
        """Write image bytes and return the storage path."""
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        self.url_cache.invalidate(path)
        return path

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def delete(self, path: str) -> None:
        """Delete an image; a missing file is a no-op so retries are safe."""
        full = self._resolve(path)
        self.url_cache.invalidate(path)
        try:
            full.unlink()
        except FileNotFoundError:
            logger.debug(f"Image already gone: {path}")
            return
        logger.info(f"Deleted image {path}")

    def url_for(self, path: str) -> str:
        """Return the URL for an image, using the cache when fresh."""
        cached = self.url_cache.get(path)
        if cached is not None:
            return cached

        if self.base_url:
            url = f"{self.base_url}/{quote(path)}"
        else:
            url = self._resolve(path).as_uri()

        self.url_cache.put(path, url)
        return url

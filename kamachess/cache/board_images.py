"""
Board image cache
----

Rendered board images keyed by (position, orientation), with a byte budget.

* Rendering is the correctness-critical path: a cache read/write failure is logged and the
  freshly rendered image is returned anyway.
* Capacity is enforced after every successful write (never on reads): when the stored bytes exceed
  the budget, the least recently modified entries are removed until usage is at most 80% of the budget.
  Evicting below the limit keeps the next writes from triggering another pass right away.

Stores: DiskImageCache (files in a directory), MemoryImageCache (in process) and NullImageCache (no caching).
"""

import hashlib
import itertools
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from kamachess.chess.engine import Position
from kamachess.core.shared_types import Color

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_BYTES = 100 * 1024 * 1024
EVICTION_TARGET_RATIO = 0.8

RenderFn = Callable[[], bytes]


def cache_key(position: Position, orientation: Color) -> str:
    """Digest of the position's FEN and the side the board is drawn from."""
    return hashlib.sha256(f"{position.fen}|{orientation}".encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    key: str
    size: int
    modified: float


class BoardImageCache(Protocol):
    def get_or_render(
        self, position: Position, orientation: Color, render_fn: RenderFn
    ) -> bytes: ...


class LRUImageCache(ABC):
    """Lookup / store / evict policy. Subclasses only provide the storage primitives."""

    def __init__(self, budget_bytes: int = DEFAULT_BUDGET_BYTES) -> None:
        if budget_bytes <= 0:
            raise ValueError(f"Cache budget must be positive, got {budget_bytes}")
        self.budget_bytes = budget_bytes

    @property
    def target_bytes(self) -> int:
        return int(self.budget_bytes * EVICTION_TARGET_RATIO)

    def get_or_render(
        self, position: Position, orientation: Color, render_fn: RenderFn
    ) -> bytes:
        key = cache_key(position, orientation)

        try:
            cached = self._read(key)
        except OSError as exc:
            logger.warning("Failed to read cached image %s: %s", key, exc)
            cached = None

        if cached is not None:
            logger.debug("Cache hit: %s", key)
            return cached

        logger.debug("Cache miss: %s", key)
        image = render_fn()

        try:
            self._write(key, image)
        except OSError as exc:
            logger.warning("Failed to cache image %s: %s", key, exc)
            return image

        self.evict_if_needed()
        return image

    def total_bytes(self) -> int:
        return sum(entry.size for entry in self._entries())

    def evict_if_needed(self) -> list[str]:
        """
        One eviction pass. Returns the keys that were removed.

        Oldest entries (by modification time) go first. An entry that cannot be removed is logged and
        skipped, and the pass carries on with the next one.
        """
        try:
            entries = self._entries()
        except OSError as exc:
            logger.warning("Cache eviction skipped, cannot list entries: %s", exc)
            return []

        usage = sum(entry.size for entry in entries)
        if usage <= self.budget_bytes:
            return []

        logger.debug(
            "Cache size %d bytes exceeds budget %d bytes. Evicting down to %d bytes",
            usage,
            self.budget_bytes,
            self.target_bytes,
        )
        evicted: list[str] = []
        for entry in sorted(entries, key=lambda e: e.modified):
            if usage <= self.target_bytes:
                break
            try:
                self._delete(entry.key)
            except OSError as exc:
                logger.warning("Failed to evict %s: %s", entry.key, exc)
                continue
            usage -= entry.size
            evicted.append(entry.key)
            logger.debug("Evicted: %s", entry.key)

        logger.debug("Evicted %d entries, %d bytes remain", len(evicted), usage)
        return evicted

    # -- STORAGE PRIMITIVES ---
    @abstractmethod
    def _read(self, key: str) -> bytes | None:
        """Stored bytes (refreshing the entry's modification time), or None when absent."""

    @abstractmethod
    def _write(self, key: str, image: bytes) -> None: ...

    @abstractmethod
    def _entries(self) -> list[CacheEntry]: ...

    @abstractmethod
    def _delete(self, key: str) -> None: ...


class DiskImageCache(LRUImageCache):
    """One PNG file per entry, the file's mtime is the entry's modification time."""

    SUFFIX = ".png"

    def __init__(self, cache_dir: str | Path, budget_bytes: int = DEFAULT_BUDGET_BYTES) -> None:
        super().__init__(budget_bytes)
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}{self.SUFFIX}"

    def _read(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        image = path.read_bytes()
        try:
            os.utime(path)
        except OSError as exc:
            logger.debug("Could not refresh mtime of %s: %s", path, exc)
        return image

    def _write(self, key: str, image: bytes) -> None:
        self._path(key).write_bytes(image)

    def _entries(self) -> list[CacheEntry]:
        entries: list[CacheEntry] = []
        for path in self.cache_dir.glob(f"*{self.SUFFIX}"):
            try:
                stat = path.stat()
            except OSError:
                # removed concurrently
                continue
            entries.append(CacheEntry(path.stem, stat.st_size, stat.st_mtime))
        return entries

    def _delete(self, key: str) -> None:
        self._path(key).unlink()


class MemoryImageCache(LRUImageCache):
    """In-process store. A monotonic counter stands in for modification times."""

    def __init__(self, budget_bytes: int = DEFAULT_BUDGET_BYTES) -> None:
        super().__init__(budget_bytes)
        self._images: dict[str, bytes] = {}
        self._modified: dict[str, float] = {}
        self._clock = itertools.count()

    def _read(self, key: str) -> bytes | None:
        image = self._images.get(key)
        if image is not None:
            self._modified[key] = next(self._clock)
        return image

    def _write(self, key: str, image: bytes) -> None:
        self._images[key] = image
        self._modified[key] = next(self._clock)

    def _entries(self) -> list[CacheEntry]:
        return [
            CacheEntry(key, len(image), self._modified[key])
            for key, image in self._images.items()
        ]

    def _delete(self, key: str) -> None:
        del self._images[key]
        del self._modified[key]


class NullImageCache:
    """Always renders."""

    def get_or_render(
        self, position: Position, orientation: Color, render_fn: RenderFn
    ) -> bytes:
        return render_fn()

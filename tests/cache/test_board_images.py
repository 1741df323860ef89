"""Unit tests for kamachess/cache/board_images.py"""

import os
from pathlib import Path

import chess
import pytest

from kamachess.cache.board_images import (
    DiskImageCache,
    MemoryImageCache,
    NullImageCache,
    cache_key,
)
from kamachess.chess import engine
from kamachess.chess.engine import Position
from kamachess.core.exceptions import RenderError
from kamachess.core.shared_types import Color


def positions(count: int) -> list[Position]:
    """Distinct positions: the start position after 0..count-1 knight shuffles."""
    board = chess.Board()
    result = [Position(board.fen())]
    shuffle = ["Nf3", "Nf6", "Ng1", "Ng8"]
    while len(result) < count:
        board.push_san(shuffle[len(board.move_stack) % 4])
        result.append(Position(board.fen()))
    return result


class CountingRenderer:
    def __init__(self, size: int = 10) -> None:
        self.size = size
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        return bytes([self.calls % 256]) * self.size


# -- KEYS --
def test_key_depends_on_position_and_orientation() -> None:
    start = engine.initial_position()
    after = positions(2)[1]
    assert cache_key(start, Color.WHITE) == cache_key(Position(chess.STARTING_FEN), Color.WHITE)
    assert cache_key(start, Color.WHITE) != cache_key(start, Color.BLACK)
    assert cache_key(start, Color.WHITE) != cache_key(after, Color.WHITE)


# -- LOOKUP --
def test_miss_then_hit() -> None:
    cache = MemoryImageCache(budget_bytes=1000)
    render = CountingRenderer()
    start = engine.initial_position()

    first = cache.get_or_render(start, Color.WHITE, render)
    second = cache.get_or_render(start, Color.WHITE, render)
    assert first == second
    assert render.calls == 1

    cache.get_or_render(start, Color.BLACK, render)
    assert render.calls == 2


def test_render_error_propagates() -> None:
    def broken() -> bytes:
        raise RenderError("no renderer")

    with pytest.raises(RenderError):
        MemoryImageCache().get_or_render(engine.initial_position(), Color.WHITE, broken)


class UnreadableCache(MemoryImageCache):
    def _read(self, key: str) -> bytes | None:
        raise OSError("disk on fire")


class UnwritableCache(MemoryImageCache):
    def _write(self, key: str, image: bytes) -> None:
        raise OSError("read-only")


def test_read_failure_is_a_miss() -> None:
    render = CountingRenderer()
    image = UnreadableCache().get_or_render(engine.initial_position(), Color.WHITE, render)
    assert image == bytes([1]) * 10
    assert render.calls == 1


def test_write_failure_still_returns_image() -> None:
    cache = UnwritableCache(budget_bytes=5)
    render = CountingRenderer(size=50)
    image = cache.get_or_render(engine.initial_position(), Color.WHITE, render)
    assert len(image) == 50
    assert cache.total_bytes() == 0


def test_null_cache_always_renders() -> None:
    render = CountingRenderer()
    cache = NullImageCache()
    for _ in range(3):
        cache.get_or_render(engine.initial_position(), Color.WHITE, render)
    assert render.calls == 3


def test_budget_must_be_positive() -> None:
    with pytest.raises(ValueError):
        MemoryImageCache(budget_bytes=0)


# -- EVICTION --
def test_eviction_down_to_eighty_percent(tmp_path: Path) -> None:
    cache = DiskImageCache(tmp_path, budget_bytes=100)
    keys = []
    for position in positions(4):
        key = cache_key(position, Color.WHITE)
        cache._write(key, b"x" * 30)
        keys.append(key)
    for age, key in enumerate(keys):
        os.utime(cache._path(key), (1_000 + age, 1_000 + age))
    assert cache.total_bytes() == 120

    evicted = cache.evict_if_needed()

    assert evicted[0] == keys[0]
    assert evicted == keys[:2]
    assert cache.total_bytes() <= 80
    assert not cache._path(keys[0]).exists()
    assert cache._path(keys[3]).exists()


def test_no_eviction_within_budget(tmp_path: Path) -> None:
    cache = DiskImageCache(tmp_path, budget_bytes=100)
    for position in positions(2):
        cache._write(cache_key(position, Color.WHITE), b"x" * 50)
    assert cache.evict_if_needed() == []
    assert cache.total_bytes() == 100


def test_writes_enforce_budget() -> None:
    cache = MemoryImageCache(budget_bytes=100)
    render = CountingRenderer(size=25)
    for position in positions(5):
        cache.get_or_render(position, Color.WHITE, render)
    assert cache.total_bytes() <= 80


def test_hit_protects_entry_from_eviction() -> None:
    cache = MemoryImageCache(budget_bytes=100)
    render = CountingRenderer(size=30)
    first, second, third, fourth = positions(4)
    for position in (first, second, third):
        cache.get_or_render(position, Color.WHITE, render)

    # touching the oldest entry makes the second one the eviction candidate
    cache.get_or_render(first, Color.WHITE, render)
    cache.get_or_render(fourth, Color.WHITE, render)

    calls = render.calls
    cache.get_or_render(first, Color.WHITE, render)
    assert render.calls == calls
    cache.get_or_render(second, Color.WHITE, render)
    assert render.calls == calls + 1


class StickyCache(MemoryImageCache):
    """An entry that cannot be deleted."""

    def __init__(self, budget_bytes: int, sticky: str) -> None:
        super().__init__(budget_bytes)
        self.sticky = sticky

    def _delete(self, key: str) -> None:
        if key == self.sticky:
            raise OSError("permission denied")
        super()._delete(key)


def test_eviction_skips_undeletable_entry() -> None:
    first, second, third, fourth = positions(4)
    cache = StickyCache(budget_bytes=100, sticky=cache_key(first, Color.WHITE))
    for position in (first, second, third, fourth):
        cache._write(cache_key(position, Color.WHITE), b"x" * 30)

    evicted = cache.evict_if_needed()

    assert cache_key(first, Color.WHITE) not in evicted
    assert evicted == [cache_key(second, Color.WHITE), cache_key(third, Color.WHITE)]
    assert cache.total_bytes() == 60


def test_disk_cache_persists_files(tmp_path: Path) -> None:
    render = CountingRenderer()
    start = engine.initial_position()
    DiskImageCache(tmp_path).get_or_render(start, Color.WHITE, render)

    # a new instance over the same directory sees the stored image
    image = DiskImageCache(tmp_path).get_or_render(start, Color.WHITE, render)
    assert render.calls == 1
    assert image == (tmp_path / f"{cache_key(start, Color.WHITE)}.png").read_bytes()

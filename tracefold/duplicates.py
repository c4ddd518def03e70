"""Detection of back-to-back repeated blocks in a frame list."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DuplicateItem:
    """``size`` frames starting at ``index`` that occur ``count`` times in a row."""

    index: int
    size: int
    count: int

    @property
    def end(self) -> int:
        return self.index + self.size * self.count


def find_duplicates(
    frames: Sequence[Any],
    limit: int,
    max_size: int,
    *,
    hash_only: bool = True,
) -> list[DuplicateItem]:
    """Scan ``frames[:limit]`` left to right for repeated blocks.

    At each position the smallest block size that repeats at least once wins
    and is extended greedily; scanning resumes after the consumed span. With
    ``hash_only`` frames are compared by hash alone.
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")
    limit = min(limit, len(frames))
    same: Callable[[int, int], bool]
    if hash_only:
        hashes = [hash(frame) for frame in frames[:limit]]

        def same(a: int, b: int) -> bool:
            return hashes[a] == hashes[b]

    else:

        def same(a: int, b: int) -> bool:
            return frames[a] == frames[b]

    items: list[DuplicateItem] = []
    i = 0
    while i < limit:
        found = None
        for size in range(1, max_size + 1):
            if i + 2 * size > limit:
                break
            count = 1
            while i + size * (count + 1) <= limit and all(
                same(i + j, i + size * count + j) for j in range(size)
            ):
                count += 1
            if count > 1:
                found = DuplicateItem(i, size, count)
                break
        if found is None:
            i += 1
        else:
            items.append(found)
            i = found.end
    return items


__all__ = ["DuplicateItem", "find_duplicates"]

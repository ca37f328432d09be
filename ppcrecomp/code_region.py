"""Half-open guest address ranges."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Iterator, List, Tuple


@dataclass(frozen=True, order=True)
class CodeRegion:
    """A ``[start, end)`` byte range inside an executable section."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"code region start 0x{self.start:08X} is past its end 0x{self.end:08X}"
            )

    @property
    def size(self) -> int:
        return self.end - self.start

    def contains(self, address: int) -> bool:
        return self.start <= address < self.end

    def overlaps(self, other: "CodeRegion") -> bool:
        return self.start < other.end and other.start < self.end

    def describe(self) -> str:
        return f"[0x{self.start:08X}, 0x{self.end:08X})"


class RangeSet:
    """Sorted, merged ``[start, end)`` ranges with logarithmic lookup.

    Adjacent and overlapping additions coalesce, so the set never holds more
    entries than there are disjoint runs.
    """

    def __init__(self) -> None:
        self._starts: List[int] = []
        self._ends: List[int] = []

    def add(self, start: int, size: int) -> None:
        if size <= 0:
            return
        end = start + size
        low = bisect.bisect_left(self._ends, start)
        high = bisect.bisect_right(self._starts, end)
        if low < high:
            start = min(start, self._starts[low])
            end = max(end, self._ends[high - 1])
        self._starts[low:high] = [start]
        self._ends[low:high] = [end]

    def contains(self, address: int) -> bool:
        index = bisect.bisect_right(self._starts, address) - 1
        return index >= 0 and address < self._ends[index]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, int) and self.contains(address)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(zip(self._starts, self._ends))

    def __len__(self) -> int:
        return len(self._starts)

    def items(self) -> List[Tuple[int, int]]:
        """``(start, size)`` pairs in address order."""

        return [(start, end - start) for start, end in self]


__all__ = ["CodeRegion", "RangeSet"]

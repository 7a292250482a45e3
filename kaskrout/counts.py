from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


class HasCounts(Protocol):
    start_count: int
    end_count: int


@dataclass(frozen=True)
class CountPatch:
    start_count: Optional[int] = None
    end_count: Optional[int] = None

    def is_empty(self) -> bool:
        return self.start_count is None and self.end_count is None


def used_count(start_count: int, end_count: int) -> int:
    return max(0, start_count - end_count)


def resolve_counts(current: HasCounts, patch: CountPatch) -> tuple[int, int, int]:
    """Merge a partial count update with the stored row.

    Whichever bound the patch omits is read from ``current``, and the used
    count is always derived from the merged pair. A caller never supplies
    ``used_count`` itself.

    Returns ``(start_count, end_count, used_count)``.
    """
    start = patch.start_count if patch.start_count is not None else current.start_count
    end = patch.end_count if patch.end_count is not None else current.end_count
    return start, end, used_count(start, end)

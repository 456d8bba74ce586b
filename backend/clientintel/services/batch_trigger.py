from __future__ import annotations

from ..settings import settings


def should_trigger(new_count: int, batch_size: int | None = None) -> bool:
    """True iff `new_count` is a positive multiple of the batch size."""
    size = int(batch_size if batch_size is not None else settings.batch_size)
    if size <= 0:
        return False
    n = int(new_count or 0)
    return n > 0 and n % size == 0


def batch_number(count: int, batch_size: int | None = None) -> int:
    size = int(batch_size if batch_size is not None else settings.batch_size)
    if size <= 0:
        return 0
    return max(0, int(count or 0)) // size


def window_bounds(new_count: int, batch_size: int | None = None) -> tuple[int, int]:
    """Inclusive sequence range of the batch closed by `new_count`."""
    size = int(batch_size if batch_size is not None else settings.batch_size)
    hi = int(new_count)
    return max(1, hi - size + 1), hi

from __future__ import annotations

import time
from typing import Any, Callable

from ..errors import BatchWindowIncomplete
from ..observability.logging import get_logger
from ..settings import settings
from .batch_trigger import window_bounds

log = get_logger("batch_window")

WindowFetch = Callable[[int, int], list[dict[str, Any]]]


def _sleep_before_reread(delay_s: float, attempt: int) -> None:
    time.sleep(max(0.0, float(delay_s)) * attempt)


def _seq_of(item: dict[str, Any], seq_attr: str) -> int | None:
    try:
        return int(item.get(seq_attr))
    except (TypeError, ValueError):
        return None


def collect_window(
    fetch: WindowFetch,
    *,
    new_count: int,
    newest: dict[str, Any],
    seq_attr: str,
    attempts: int | None = None,
    delay_s: float | None = None,
) -> list[dict[str, Any]]:
    """
    Exactly the items stamped `new_count-4..new_count`, newest first.

    `fetch(lo, hi)` reads the sequence index, which lags the write that just
    closed the batch. `newest` is that write, read back by primary key, and
    always fills the top slot. Other gaps are re-read a bounded number of
    times before giving up with BatchWindowIncomplete.
    """
    lo, hi = window_bounds(new_count)
    if _seq_of(newest, seq_attr) != hi:
        raise ValueError(f"newest item must carry {seq_attr}={hi}")
    expected = set(range(lo, hi + 1))
    tries = max(1, int(attempts if attempts is not None else settings.batch_window_read_attempts))
    delay = float(delay_s if delay_s is not None else settings.batch_window_read_delay_s)

    missing: list[int] = []
    for attempt in range(1, tries + 1):
        by_seq: dict[int, dict[str, Any]] = {}
        for it in fetch(lo, hi):
            seq = _seq_of(it, seq_attr)
            if seq in expected:
                by_seq[seq] = it
        by_seq[hi] = newest
        missing = sorted(expected - set(by_seq))
        if not missing:
            return [by_seq[s] for s in sorted(by_seq, reverse=True)]
        if attempt < tries:
            log.info("batch_window_lagging", seq_from=lo, seq_to=hi, missing=missing, attempt=attempt)
            _sleep_before_reread(delay, attempt)

    log.warning("batch_window_incomplete", seq_from=lo, seq_to=hi, missing=missing, attempts=tries)
    raise BatchWindowIncomplete(missing)

from __future__ import annotations

from typing import Any, Callable, Literal

from ..db.dynamodb.errors import DdbConflict, DdbNotFound, DdbTransactionCanceled
from ..db.dynamodb.table import DynamoTable
from ..observability.logging import get_logger
from ..settings import settings
from .common import now_iso

log = get_logger("counters")

WriteKind = Literal["put", "update"]

# Builds the write that must commit together with the counter bump, given the
# value the counter is about to take. Returns ("put" | "update", tx entry).
CompanionWrite = Callable[[int], tuple[WriteKind, dict[str, Any]]]


def read_count(table: DynamoTable, *, key: dict[str, str], attr: str) -> int:
    item = table.get_item(key=key, consistent_read=True)
    if not item:
        raise DdbNotFound(
            message="Counter owner not found",
            operation="GetItem",
            table_name=table.table_name,
            key=key,
        )
    try:
        return max(0, int(item.get(attr) or 0))
    except (TypeError, ValueError):
        return 0


def _counter_update(
    table: DynamoTable, *, key: dict[str, str], attr: str, expected: int, now: str
) -> dict[str, Any]:
    if expected == 0:
        cond = "attribute_exists(pk) AND (attribute_not_exists(#c) OR #c = :expected)"
    else:
        cond = "attribute_exists(pk) AND #c = :expected"
    return table.tx_update(
        key=key,
        update_expression="SET #c = :next, updatedAt = :now",
        expression_attribute_names={"#c": attr},
        expression_attribute_values={":next": expected + 1, ":expected": expected, ":now": now},
        condition_expression=cond,
    )


def increment_with(
    table: DynamoTable,
    *,
    key: dict[str, str],
    attr: str,
    companion: CompanionWrite,
    max_attempts: int | None = None,
) -> int | None:
    """
    Bump `attr` on the item at `key` by exactly one, atomically with `companion`.

    Compare-and-swap: read the current value `c`, then commit one
    TransactWriteItems holding the companion write (index 0) and
    `SET attr = c + 1` conditioned on `attr = c` (index 1).

    - Counter race lost: re-read and try again, up to `max_attempts`.
    - Companion condition failed: returns None (the companion's precondition
      no longer holds, e.g. the insight is no longer pending).

    Returns the new counter value on success.
    """
    attempts = max(1, int(max_attempts or settings.counter_cas_max_attempts))
    for attempt in range(1, attempts + 1):
        current = read_count(table, key=key, attr=attr)
        nxt = current + 1
        kind, entry = companion(nxt)
        bump = _counter_update(table, key=key, attr=attr, expected=current, now=now_iso())
        puts = [entry] if kind == "put" else []
        updates = ([entry] if kind == "update" else []) + [bump]
        try:
            table.transact_write(puts=puts, updates=updates)
        except DdbTransactionCanceled as e:
            if e.condition_failed_at(0):
                return None
            log.info(
                "counter_cas_retry",
                pk=key.get("pk"),
                attr=attr,
                expected=current,
                attempt=attempt,
                reasons=e.reasons,
            )
            continue
        return nxt

    raise DdbConflict(
        message="Counter update kept losing races; giving up",
        operation="TransactWriteItems",
        table_name=table.table_name,
        key=key,
        retryable=True,
    )

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbTransactionCanceled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 1
    base_delay_s: float = 0.05
    max_delay_s: float = 1.5


# Writes: one attempt, failures surface to the caller unchanged.
NO_RETRY = RetryPolicy(max_attempts=1)
# Reads are idempotent, so throttling gets a short jittered backoff.
READ_RETRY = RetryPolicy(max_attempts=4, base_delay_s=0.05, max_delay_s=0.8)


# AWS error code -> (error class, message, retryable)
_CODE_MAP: dict[str, tuple[type[DdbError], str, bool]] = {
    "ConditionalCheckFailedException": (DdbConflict, "DynamoDB conditional check failed", False),
    "ValidationException": (DdbValidation, "DynamoDB request validation failed", False),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied", False),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB credentials rejected", False),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found", False),
    "ProvisionedThroughputExceededException": (DdbThrottled, "DynamoDB throughput exceeded", True),
    "ThrottlingException": (DdbThrottled, "DynamoDB request throttled", True),
    "RequestLimitExceeded": (DdbThrottled, "DynamoDB request limit exceeded", True),
    "InternalServerError": (DdbThrottled, "DynamoDB internal error", True),
    "ServiceUnavailable": (DdbThrottled, "DynamoDB service unavailable", True),
}

_TX_CANCELED_CODES = ("TransactionCanceledException", "TransactionConflictException")


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter.
    ceiling = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    time.sleep(random.random() * ceiling)


def cancellation_reasons(exc: ClientError) -> list[str]:
    """One code per transact item, in request order ("None" where the item was fine)."""
    raw = (exc.response or {}).get("CancellationReasons") or []
    return [str((r or {}).get("Code") or "None") for r in raw]


def map_ddb_error(
    exc: Exception,
    *,
    operation: str,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    ctx: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        resp = exc.response or {}
        code = str(resp.get("Error", {}).get("Code") or "")
        ctx["aws_request_id"] = resp.get("ResponseMetadata", {}).get("RequestId")

        if code in _TX_CANCELED_CODES:
            return DdbTransactionCanceled(
                message="DynamoDB transaction canceled",
                reasons=cancellation_reasons(exc),
                **ctx,
            )
        if code in _CODE_MAP:
            cls, message, retryable = _CODE_MAP[code]
            return cls(message=message, retryable=retryable, **ctx)
        return DdbInternal(message=f"DynamoDB request failed ({code or 'ClientError'})", **ctx)

    if isinstance(exc, BotoCoreError):
        # Connection / endpoint / credential resolution problems.
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **ctx)

    return DdbInternal(message="Unexpected DynamoDB error", **ctx)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    """Run one DynamoDB request, mapping botocore failures to DdbError."""
    policy = retry_policy or NO_RETRY
    attempts = max(1, int(policy.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = map_ddb_error(e, operation=operation, table_name=table_name, key=key)
            if not mapped.retryable or attempt >= attempts:
                raise mapped from e
            _sleep_backoff(policy, attempt)

    raise DdbInternal(message="DynamoDB request failed", operation=operation, table_name=table_name, key=key)

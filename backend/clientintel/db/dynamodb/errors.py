from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ...errors import PersistenceError


@dataclass(slots=True)
class DdbError(PersistenceError):
    """Base error for DynamoDB operations.

    These are caught by a FastAPI exception handler and rendered
    into RFC7807 problem-details responses.
    """

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class DdbNotFound(DdbError):
    pass


@dataclass(slots=True)
class DdbConflict(DdbError):
    pass


@dataclass(slots=True)
class DdbTransactionCanceled(DdbConflict):
    """TransactWriteItems was canceled.

    `reasons` holds one cancellation code per transact item, in request order
    ("None" for items that did not cause the cancellation).
    """

    reasons: list[str] | None = None

    def reason_at(self, index: int) -> str:
        rs = self.reasons or []
        if index < 0 or index >= len(rs):
            return "None"
        return str(rs[index] or "None")

    def condition_failed_at(self, index: int) -> bool:
        return self.reason_at(index) == "ConditionalCheckFailed"


@dataclass(slots=True)
class DdbValidation(DdbError):
    pass


@dataclass(slots=True)
class DdbThrottled(DdbError):
    pass


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    pass


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass

from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import get_main_table
from ..domain.models import INSIGHT_APPROVED, INSIGHT_PENDING, INSIGHT_REJECTED
from .clients_repo import APPROVED_COUNT_ATTR, client_key
from .common import new_id, now_iso, profile_key, seq_sort_key, strip_keys
from .counters import increment_with

ENRICHMENT_FIELDS = (
    "summary",
    "themes",
    "timeHorizon",
    "budgetSignal",
    "competitorMention",
)


def insight_key(insight_id: str) -> dict[str, str]:
    return profile_key("INSIGHT", insight_id, label="insight_id")


def approved_gsi_pk(client_id: str) -> str:
    cid = str(client_id or "").strip()
    if not cid:
        raise ValueError("client_id is required")
    return f"CLIENT_APPROVED_INSIGHTS#{cid}"


def normalize_insight_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="insightId")


def build_insight_item(
    *,
    author_id: str,
    client_id: str,
    raw_text: str,
    enrichment: dict[str, Any],
    project_id: str | None = None,
    stakeholder_id: str | None = None,
    insight_id: str | None = None,
) -> dict[str, Any]:
    iid = str(insight_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **insight_key(iid),
        "entityType": "Insight",
        "insightId": iid,
        "authorId": str(author_id).strip(),
        "clientId": str(client_id).strip(),
        "projectId": str(project_id or "").strip() or None,
        "stakeholderId": str(stakeholder_id or "").strip() or None,
        "rawText": str(raw_text),
        "status": INSIGHT_PENDING,
        "approvalSeq": None,
        "approvedAt": None,
        "approvedBy": None,
        "createdAt": now,
        "updatedAt": now,
    }
    for f in ENRICHMENT_FIELDS:
        item[f] = enrichment.get(f)
    item["themes"] = list(item.get("themes") or [])
    return item


def create_pending_insight(item: dict[str, Any]) -> dict[str, Any]:
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_insight_for_api(item) or {}


def create_approved_insight(
    item: dict[str, Any], *, approved_by: str
) -> tuple[dict[str, Any], int]:
    """
    Insert an insight already approved, bumping the client's approved count in
    the same transaction. Returns (insight, new count).
    """
    t = get_main_table()
    cid = str(item.get("clientId") or "")
    written: dict[str, Any] = {}

    def _companion(seq: int):
        now = now_iso()
        written.clear()
        written.update(
            {
                **item,
                "status": INSIGHT_APPROVED,
                "approvalSeq": seq,
                "approvedAt": now,
                "approvedBy": str(approved_by),
                "updatedAt": now,
                "gsi1pk": approved_gsi_pk(cid),
                "gsi1sk": seq_sort_key(seq),
            }
        )
        return "put", t.tx_put(item=written, condition_expression="attribute_not_exists(pk)")

    seq = increment_with(t, key=client_key(cid), attr=APPROVED_COUNT_ATTR, companion=_companion)
    if seq is None:
        raise DdbConflict(
            message="Insight already exists",
            operation="TransactWriteItems",
            table_name=t.table_name,
            key=insight_key(str(item.get("insightId") or "")),
        )
    return normalize_insight_for_api(written) or {}, seq


def approve_pending_insight(*, insight_id: str, client_id: str, approved_by: str) -> int | None:
    """
    pending -> approved plus the client counter bump, as one transaction.

    Returns the new count, or None when the insight was no longer pending.
    """
    t = get_main_table()

    def _companion(seq: int):
        now = now_iso()
        return "update", t.tx_update(
            key=insight_key(insight_id),
            update_expression=(
                "SET #s = :approved, approvalSeq = :seq, approvedAt = :now, approvedBy = :by, "
                "updatedAt = :now, gsi1pk = :gpk, gsi1sk = :gsk"
            ),
            expression_attribute_names={"#s": "status"},
            expression_attribute_values={
                ":approved": INSIGHT_APPROVED,
                ":pending": INSIGHT_PENDING,
                ":seq": seq,
                ":now": now,
                ":by": str(approved_by),
                ":gpk": approved_gsi_pk(client_id),
                ":gsk": seq_sort_key(seq),
            },
            condition_expression="#s = :pending",
        )

    return increment_with(t, key=client_key(client_id), attr=APPROVED_COUNT_ATTR, companion=_companion)


def reject_pending_insight(*, insight_id: str, rejected_by: str) -> dict[str, Any] | None:
    """pending -> rejected. Raises DdbConflict when the insight is not pending."""
    now = now_iso()
    updated = get_main_table().update_item(
        key=insight_key(insight_id),
        update_expression="SET #s = :rejected, rejectedAt = :now, rejectedBy = :by, updatedAt = :now",
        expression_attribute_names={"#s": "status"},
        expression_attribute_values={
            ":rejected": INSIGHT_REJECTED,
            ":pending": INSIGHT_PENDING,
            ":now": now,
            ":by": str(rejected_by),
        },
        condition_expression="#s = :pending",
    )
    return normalize_insight_for_api(updated)


def get_insight(insight_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=insight_key(insight_id), consistent_read=True)
    return normalize_insight_for_api(it)


def list_approved_window(*, client_id: str, seq_from: int, seq_to: int) -> list[dict[str, Any]]:
    """Approved insights with approvalSeq in [seq_from, seq_to], newest first."""
    lo, hi = int(seq_from), int(seq_to)
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(approved_gsi_pk(client_id))
        & Key("gsi1sk").between(seq_sort_key(lo), seq_sort_key(hi)),
        scan_index_forward=False,
    )
    return [n for n in (normalize_insight_for_api(it) for it in items) if n]

from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import get_main_table
from .common import new_id, now_iso, profile_key, seq_sort_key, strip_keys
from .counters import increment_with

RESPONSE_COUNT_ATTR = "responseCount"


def campaign_key(campaign_id: str) -> dict[str, str]:
    return profile_key("CAMPAIGN", campaign_id, label="campaign_id")


def response_key(response_id: str) -> dict[str, str]:
    return profile_key("CAMPAIGN_RESPONSE", response_id, label="response_id")


def responses_gsi_pk(campaign_id: str) -> str:
    cid = str(campaign_id or "").strip()
    if not cid:
        raise ValueError("campaign_id is required")
    return f"CAMPAIGN_RESPONSES#{cid}"


def normalize_campaign_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="campaignId")


def normalize_response_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="responseId")


def create_campaign(
    *,
    created_by: str,
    topic: str,
    description: str | None = None,
    questions: list[str] | None = None,
    campaign_id: str | None = None,
) -> dict[str, Any]:
    tp = str(topic or "").strip()
    if not tp:
        raise ValueError("topic is required")
    cid = str(campaign_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **campaign_key(cid),
        "entityType": "Campaign",
        "campaignId": cid,
        "createdBy": str(created_by).strip(),
        "topic": tp,
        "description": str(description or "").strip() or None,
        "questions": [str(q).strip() for q in (questions or []) if str(q or "").strip()],
        "status": "active",
        RESPONSE_COUNT_ATTR: 0,
        "createdAt": now,
        "updatedAt": now,
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_campaign_for_api(item) or {}


def get_campaign(campaign_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=campaign_key(campaign_id))
    return normalize_campaign_for_api(it)


def close_campaign(campaign_id: str) -> dict[str, Any] | None:
    updated = get_main_table().update_item(
        key=campaign_key(campaign_id),
        update_expression="SET #s = :closed, updatedAt = :now",
        expression_attribute_names={"#s": "status"},
        expression_attribute_values={":closed": "closed", ":now": now_iso()},
        condition_expression="attribute_exists(pk)",
    )
    return normalize_campaign_for_api(updated)


def create_response(
    *,
    campaign_id: str,
    user_id: str,
    raw_response: str,
    enrichment: dict[str, Any],
    client_id: str | None = None,
    response_id: str | None = None,
) -> tuple[dict[str, Any], int]:
    """
    Insert an enriched response and bump the campaign's responseCount in one
    transaction. Returns (response, new count).
    """
    t = get_main_table()
    rid = str(response_id or "").strip() or new_id()
    cid = str(campaign_id).strip()
    written: dict[str, Any] = {}

    def _companion(seq: int):
        now = now_iso()
        written.clear()
        written.update(
            {
                **response_key(rid),
                "entityType": "CampaignResponse",
                "responseId": rid,
                "campaignId": cid,
                "userId": str(user_id).strip(),
                "clientId": str(client_id or "").strip() or None,
                "rawResponse": str(raw_response),
                "summary": enrichment.get("summary"),
                "themes": list(enrichment.get("themes") or []),
                "responseSeq": seq,
                "createdAt": now,
                "updatedAt": now,
                "gsi1pk": responses_gsi_pk(cid),
                "gsi1sk": seq_sort_key(seq),
            }
        )
        return "put", t.tx_put(item=written, condition_expression="attribute_not_exists(pk)")

    seq = increment_with(t, key=campaign_key(cid), attr=RESPONSE_COUNT_ATTR, companion=_companion)
    if seq is None:
        raise DdbConflict(
            message="Campaign response already exists",
            operation="TransactWriteItems",
            table_name=t.table_name,
            key=response_key(rid),
        )
    return normalize_response_for_api(written) or {}, seq


def get_response(response_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=response_key(response_id))
    return normalize_response_for_api(it)


def list_response_window(*, campaign_id: str, seq_from: int, seq_to: int) -> list[dict[str, Any]]:
    """Responses with responseSeq in [seq_from, seq_to], newest first."""
    lo, hi = int(seq_from), int(seq_to)
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(responses_gsi_pk(campaign_id))
        & Key("gsi1sk").between(seq_sort_key(lo), seq_sort_key(hi)),
        scan_index_forward=False,
    )
    return [n for n in (normalize_response_for_api(it) for it in items) if n]

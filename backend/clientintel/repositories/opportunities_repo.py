from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from ..domain.models import OPPORTUNITY_STAGES
from .common import new_id, now_iso, profile_key, strip_keys


def opportunity_key(opportunity_id: str) -> dict[str, str]:
    return profile_key("OPPORTUNITY", opportunity_id, label="opportunity_id")


def _client_opportunities_gsi_pk(client_id: str) -> str:
    cid = str(client_id or "").strip()
    if not cid:
        raise ValueError("client_id is required")
    return f"CLIENT_OPPORTUNITIES#{cid}"


def normalize_opportunity_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="opportunityId")


def create_opportunity(
    *,
    client_id: str,
    title: str,
    description: str | None = None,
    value_estimate: str | None = None,
    insight_id: str | None = None,
    campaign_id: str | None = None,
    stage: str = "identified",
    opportunity_id: str | None = None,
) -> dict[str, Any]:
    st = str(stage or "").strip().lower()
    if st not in OPPORTUNITY_STAGES:
        raise ValueError(f"invalid stage: {stage}")
    oid = str(opportunity_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **opportunity_key(oid),
        "entityType": "Opportunity",
        "opportunityId": oid,
        "clientId": str(client_id).strip(),
        "insightId": str(insight_id or "").strip() or None,
        "campaignId": str(campaign_id or "").strip() or None,
        "title": str(title or "").strip(),
        "description": str(description or "").strip() or None,
        "valueEstimate": str(value_estimate or "").strip() or None,
        "stage": st,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": _client_opportunities_gsi_pk(client_id),
        "gsi1sk": f"{now}#{oid}",
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_opportunity_for_api(item) or {}


def get_opportunity(opportunity_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=opportunity_key(opportunity_id))
    return normalize_opportunity_for_api(it)


def list_opportunities_for_client(client_id: str) -> list[dict[str, Any]]:
    cid = str(client_id or "").strip()
    if not cid:
        return []
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(_client_opportunities_gsi_pk(cid)),
        scan_index_forward=False,
    )
    return [n for n in (normalize_opportunity_for_api(it) for it in items) if n]

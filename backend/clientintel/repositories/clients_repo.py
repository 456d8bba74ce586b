from __future__ import annotations

from typing import Any

from ..db.dynamodb.table import get_main_table
from .common import name_lower, new_id, now_iso, profile_key, strip_keys
from .name_search import find_by_name_fragment

APPROVED_COUNT_ATTR = "approvedInsightsCount"


def client_key(client_id: str) -> dict[str, str]:
    return profile_key("CLIENT", client_id, label="client_id")


def normalize_client_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="clientId")


def create_client(
    *,
    name: str,
    industry: str | None = None,
    description: str | None = None,
    client_id: str | None = None,
) -> dict[str, Any]:
    nm = str(name or "").strip()
    if not nm:
        raise ValueError("name is required")
    cid = str(client_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **client_key(cid),
        "entityType": "Client",
        "clientId": cid,
        "name": nm,
        "nameLower": name_lower(nm),
        "industry": str(industry or "").strip() or None,
        "description": str(description or "").strip() or None,
        APPROVED_COUNT_ATTR: 0,
        "createdAt": now,
        "updatedAt": now,
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_client_for_api(item) or {}


def get_client(client_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=client_key(client_id))
    return normalize_client_for_api(it)


def get_approved_count(client_id: str) -> int:
    it = get_main_table().get_item(key=client_key(client_id), consistent_read=True) or {}
    return int(it.get(APPROVED_COUNT_ATTR) or 0)


def search_clients(fragment: str) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for it in find_by_name_fragment(entity_type="Client", fragment=fragment):
        norm = normalize_client_for_api(it)
        if norm:
            out.append(norm)
    return out

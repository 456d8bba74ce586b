from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import name_lower, new_id, now_iso, profile_key, strip_keys
from .name_search import find_by_name_fragment


def stakeholder_key(stakeholder_id: str) -> dict[str, str]:
    return profile_key("STAKEHOLDER", stakeholder_id, label="stakeholder_id")


def _client_stakeholders_gsi_pk(client_id: str) -> str:
    cid = str(client_id or "").strip()
    if not cid:
        raise ValueError("client_id is required")
    return f"CLIENT_STAKEHOLDERS#{cid}"


def normalize_stakeholder_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="stakeholderId")


def create_stakeholder(
    *,
    client_id: str,
    name: str,
    role: str | None = None,
    email: str | None = None,
    notes: str | None = None,
    stakeholder_id: str | None = None,
) -> dict[str, Any]:
    nm = str(name or "").strip()
    if not nm:
        raise ValueError("name is required")
    sid = str(stakeholder_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **stakeholder_key(sid),
        "entityType": "Stakeholder",
        "stakeholderId": sid,
        "clientId": str(client_id).strip(),
        "name": nm,
        "nameLower": name_lower(nm),
        "role": str(role or "").strip() or None,
        "email": str(email or "").strip().lower() or None,
        "notes": str(notes or "").strip() or None,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": _client_stakeholders_gsi_pk(client_id),
        "gsi1sk": f"{now}#{sid}",
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_stakeholder_for_api(item) or {}


def get_stakeholder(stakeholder_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=stakeholder_key(stakeholder_id))
    return normalize_stakeholder_for_api(it)


def list_stakeholders_for_client(client_id: str) -> list[dict[str, Any]]:
    cid = str(client_id or "").strip()
    if not cid:
        return []
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(_client_stakeholders_gsi_pk(cid)),
        scan_index_forward=True,
    )
    return [n for n in (normalize_stakeholder_for_api(it) for it in items) if n]


def search_stakeholders(fragment: str) -> list[dict[str, Any]]:
    items = find_by_name_fragment(entity_type="Stakeholder", fragment=fragment)
    return [n for n in (normalize_stakeholder_for_api(it) for it in items) if n]

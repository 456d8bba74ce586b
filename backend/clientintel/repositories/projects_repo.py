from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import name_lower, new_id, now_iso, profile_key, strip_keys
from .name_search import find_by_name_fragment


def project_key(project_id: str) -> dict[str, str]:
    return profile_key("PROJECT", project_id, label="project_id")


def _client_projects_gsi_pk(client_id: str) -> str:
    cid = str(client_id or "").strip()
    if not cid:
        raise ValueError("client_id is required")
    return f"CLIENT_PROJECTS#{cid}"


def normalize_project_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="projectId")


def create_project(
    *,
    client_id: str,
    name: str,
    description: str | None = None,
    status: str = "active",
    project_id: str | None = None,
) -> dict[str, Any]:
    nm = str(name or "").strip()
    if not nm:
        raise ValueError("name is required")
    pid = str(project_id or "").strip() or new_id()
    now = now_iso()
    item: dict[str, Any] = {
        **project_key(pid),
        "entityType": "Project",
        "projectId": pid,
        "clientId": str(client_id).strip(),
        "name": nm,
        "nameLower": name_lower(nm),
        "description": str(description or "").strip() or None,
        "status": str(status or "active").strip().lower() or "active",
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": _client_projects_gsi_pk(client_id),
        "gsi1sk": f"{now}#{pid}",
    }
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_project_for_api(item) or {}


def get_project(project_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=project_key(project_id))
    return normalize_project_for_api(it)


def list_projects_for_client(client_id: str) -> list[dict[str, Any]]:
    cid = str(client_id or "").strip()
    if not cid:
        return []
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(_client_projects_gsi_pk(cid)),
        scan_index_forward=True,
    )
    return [n for n in (normalize_project_for_api(it) for it in items) if n]


def search_projects(fragment: str) -> list[dict[str, Any]]:
    items = find_by_name_fragment(entity_type="Project", fragment=fragment)
    return [n for n in (normalize_project_for_api(it) for it in items) if n]

from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .common import new_id, now_iso, profile_key, strip_keys


def user_key(user_id: str) -> dict[str, str]:
    return profile_key("USER", user_id, label="user_id")


def normalize_team(team: str | None) -> str:
    return str(team or "").strip().lower()


def team_gsi_pk(team: str) -> str:
    return f"TEAM#{normalize_team(team)}"


def normalize_user_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="userId")


def create_user(
    *,
    email: str,
    full_name: str | None = None,
    role: str | None = None,
    team: str | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    uid = str(user_id or "").strip() or new_id()
    now = now_iso()
    tm = normalize_team(team) or None
    item: dict[str, Any] = {
        **user_key(uid),
        "entityType": "User",
        "userId": uid,
        "email": str(email or "").strip().lower(),
        "fullName": str(full_name or "").strip() or None,
        "role": str(role or "").strip().lower() or None,
        "team": tm,
        "createdAt": now,
        "updatedAt": now,
    }
    if tm:
        # GSI1: team routing in insertion order.
        item["gsi1pk"] = team_gsi_pk(tm)
        item["gsi1sk"] = f"{now}#{uid}"
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_user_for_api(item) or {}


def get_user(user_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=user_key(user_id))
    return normalize_user_for_api(it)


def first_user_for_team(team: str | None) -> dict[str, Any] | None:
    """The earliest-created user whose team matches (case-insensitive)."""
    tm = normalize_team(team)
    if not tm:
        return None
    pg = get_main_table().query_page(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(team_gsi_pk(tm)),
        scan_index_forward=True,
        limit=1,
    )
    items = pg.items or []
    return normalize_user_for_api(items[0]) if items else None

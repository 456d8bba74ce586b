from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Attr

from ..db.dynamodb.table import get_main_table


def find_by_name_fragment(*, entity_type: str, fragment: str) -> list[dict[str, Any]]:
    """
    Case-insensitive substring match of `fragment` against `nameLower`.

    Backed by a filtered scan: reference entities (clients, stakeholders,
    projects) are small tables of hand-entered names.
    """
    frag = str(fragment or "").strip().lower()
    if not frag:
        return []
    return get_main_table().scan_all(
        filter_expression=Attr("entityType").eq(entity_type) & Attr("nameLower").contains(frag)
    )

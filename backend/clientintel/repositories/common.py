from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def profile_key(prefix: str, entity_id: str, *, label: str) -> dict[str, str]:
    eid = str(entity_id or "").strip()
    if not eid:
        raise ValueError(f"{label} is required")
    return {"pk": f"{prefix}#{eid}", "sk": "PROFILE"}


def seq_sort_key(seq: int) -> str:
    # Zero-padded so lexical GSI ordering matches numeric ordering.
    return f"{int(seq):010d}"


def strip_keys(item: dict[str, Any] | None, *, id_field: str) -> dict[str, Any] | None:
    if not item:
        return None
    out = dict(item)
    out["_id"] = str(item.get(id_field) or "").strip() or None
    for k in ("pk", "sk", "gsi1pk", "gsi1sk", "entityType"):
        out.pop(k, None)
    return out


def name_lower(name: str | None) -> str:
    return str(name or "").strip().lower()

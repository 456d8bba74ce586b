from __future__ import annotations

import json
from typing import Any


def clip_text(text: str, *, max_chars: int) -> str:
    s = str(text or "")
    if max_chars <= 0:
        return ""
    return s if len(s) <= max_chars else s[:max_chars]


def json_section(label: str, payload: Any, *, max_chars: int = 6000) -> str:
    """
    Render a labelled JSON block for a prompt, bounded to `max_chars`.
    """
    body = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    return f"{label}:\n{clip_text(body, max_chars=max_chars)}"


def pick(item: dict[str, Any] | None, *fields: str) -> dict[str, Any]:
    # Project a stored item down to the fields a prompt needs.
    src = item if isinstance(item, dict) else {}
    return {f: src.get(f) for f in fields if src.get(f) not in (None, "", [])}

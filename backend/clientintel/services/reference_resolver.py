from __future__ import annotations

from typing import Any

from ..domain.models import ReferenceMatches
from ..repositories.clients_repo import search_clients
from ..repositories.projects_repo import search_projects
from ..repositories.stakeholders_repo import search_stakeholders
from ..settings import settings


def text_prefix(raw_text: str | None, prefix_chars: int) -> str:
    s = str(raw_text or "").strip()
    return s[: max(0, int(prefix_chars))].strip().lower()


def search_references(raw_text: str | None, prefix_chars: int | None = None) -> ReferenceMatches:
    """
    Fuzzy-match the leading slice of `raw_text` against client, stakeholder and
    project names (case-insensitive substring). Matches are hints, not links:
    no ranking, no de-duplication.
    """
    n = int(prefix_chars if prefix_chars is not None else settings.fuzzy_prefix_chars)
    prefix = text_prefix(raw_text, n)
    if not prefix:
        return ReferenceMatches()
    return ReferenceMatches(
        clients=search_clients(prefix),
        stakeholders=search_stakeholders(prefix),
        projects=search_projects(prefix),
    )


def guess_client(raw_text: str | None, prefix_chars: int | None = None) -> dict[str, Any] | None:
    n = int(prefix_chars if prefix_chars is not None else settings.client_guess_prefix_chars)
    prefix = text_prefix(raw_text, n)
    if not prefix:
        return None
    matches = search_clients(prefix)
    return matches[0] if matches else None

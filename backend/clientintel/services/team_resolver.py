from __future__ import annotations

from ..repositories.users_repo import first_user_for_team, normalize_team


def resolve_assignee(team: str | None, fallback_user_id: str | None) -> str | None:
    """
    Map a suggested team to a user id: the earliest-created member of that team,
    else `fallback_user_id`.

    First match only; no load balancing across the team.
    """
    tm = normalize_team(team)
    if tm:
        user = first_user_for_team(tm)
        if user and user.get("userId"):
            return str(user["userId"])
    return str(fallback_user_id).strip() if fallback_user_id else None

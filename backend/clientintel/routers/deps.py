from __future__ import annotations

from fastapi import HTTPException, Request

from ..domain.models import Actor


def get_actor(request: Request) -> Actor:
    actor = getattr(request.state, "user", None)
    if not isinstance(actor, Actor):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return actor

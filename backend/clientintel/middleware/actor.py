from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..domain.models import Actor

# Set by the authenticating gateway in front of this service.
USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"
USER_TEAM_HEADER = "x-user-team"


def actor_from_headers(request: Request) -> Actor | None:
    return Actor.from_claims(
        {
            "userId": request.headers.get(USER_ID_HEADER),
            "role": request.headers.get(USER_ROLE_HEADER),
            "team": request.headers.get(USER_TEAM_HEADER),
        }
    )


class ActorMiddleware(BaseHTTPMiddleware):
    """
    Populate request.state.user with the caller's Actor.

    Authentication happens upstream; this only trusts the identity headers it
    forwards. Requests without them carry no actor, and protected routes
    answer 401 (see routers.deps.get_actor).
    """

    async def dispatch(self, request: Request, call_next):
        if getattr(request.state, "user", None) is None:
            request.state.user = actor_from_headers(request)
        return await call_next(request)

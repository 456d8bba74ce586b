from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger


def _actor_id(request: Request) -> str | None:
    actor = getattr(getattr(request, "state", None), "user", None)
    uid = getattr(actor, "user_id", None) if actor else None
    return str(uid) if uid else None


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    One structured log line per request.
    """

    def __init__(self, app, *, exclude_paths: set[str] | None = None):
        super().__init__(app)
        self._exclude = exclude_paths or set()
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self._exclude:
            return await call_next(request)

        start = time.perf_counter()
        method = request.method.upper()
        client = getattr(request, "client", None)
        client_host = getattr(client, "host", None) if client else None

        try:
            response = await call_next(request)
        except Exception:
            self._log.exception(
                "request_error",
                http_method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_ip=client_host,
                actor_id=_actor_id(request),
            )
            raise

        status_code = int(getattr(response, "status_code", 0) or 0)
        log_fn = self._log.warning if status_code >= 500 else self._log.info
        log_fn(
            "request",
            http_method=method,
            path=path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
            client_ip=client_host,
            actor_id=_actor_id(request),
        )
        return response

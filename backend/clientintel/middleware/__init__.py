from __future__ import annotations

from .access_log import AccessLogMiddleware
from .actor import ActorMiddleware
from .request_context import RequestContextMiddleware

__all__ = ["AccessLogMiddleware", "ActorMiddleware", "RequestContextMiddleware"]

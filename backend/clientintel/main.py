from __future__ import annotations

import re

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .db.dynamodb.errors import (
    DdbConflict,
    DdbError,
    DdbNotFound,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from .errors import PipelineError, ReferenceNotFound
from .middleware.access_log import AccessLogMiddleware
from .middleware.actor import ActorMiddleware
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response, problem_type
from .routers.campaigns import router as campaigns_router
from .routers.health import router as health_router
from .routers.insights import router as insights_router
from .settings import settings


def create_app() -> FastAPI:
    # Logging must be configured before the app starts handling requests.
    configure_logging(level=settings.log_level)
    log = get_logger("startup")

    app = FastAPI(
        title="Client Intelligence Pipeline",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        redirect_slashes=False,
    )

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Middlewares (order matters; last added is outermost)
    app.add_middleware(ActorMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PipelineError, _pipeline_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Routes
    app.include_router(health_router)
    app.include_router(insights_router, prefix="/api")
    app.include_router(campaigns_router, prefix="/api")

    return app


def _slug(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower()


def _pipeline_error_handler(request: Request, exc: PipelineError) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    extensions: dict[str, object] | None = None
    if isinstance(exc, ReferenceNotFound):
        extensions = {"entity": exc.entity, "id": exc.entity_id}

    log = get_logger("errors")
    log_fn = log.warning if status_code >= 500 else log.info
    log_fn(
        "pipeline_error",
        error_type=type(exc).__name__,
        status_code=status_code,
        path=request.url.path,
        error=str(exc),
    )
    return problem_response(
        request=request,
        status_code=status_code,
        title=exc.title,
        detail=str(exc) or None,
        type=problem_type(_slug(type(exc).__name__)),
        extensions=extensions,
    )


_DDB_STATUS: tuple[tuple[type[DdbError], int], ...] = (
    (DdbValidation, 400),
    (DdbNotFound, 404),
    (DdbConflict, 409),
    (DdbThrottled, 503),
    (DdbUnavailable, 503),
)


def _ddb_status(exc: DdbError) -> int:
    for cls, status_code in _DDB_STATUS:
        if isinstance(exc, cls):
            return status_code
    return 500


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    status_code = _ddb_status(exc)
    title = "Storage Error" if status_code == 500 else None
    extensions = {
        "operation": exc.operation,
        "table": exc.table_name,
        "key": exc.key,
        "awsRequestId": exc.aws_request_id,
        "retryable": bool(exc.retryable),
    }
    get_logger("errors").warning(
        "persistence_error",
        error_type=type(exc).__name__,
        status_code=status_code,
        path=request.url.path,
        operation=exc.operation,
        error=str(exc),
    )

    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=str(exc) or None,
        type=problem_type("persistence-error"),
        extensions={k: v for k, v in extensions.items() if v is not None},
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)
    safe_detail = str(detail) if detail is not None else None
    if status_code == 404:
        safe_detail = safe_detail or "Route not found"
    return problem_response(request=request, status_code=status_code, detail=safe_detail)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        loc_path = ".".join([str(x) for x in loc if x != "body"])
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": loc_path,
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Full traceback goes to the logs; the response stays generic in production.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    actor = getattr(getattr(request, "state", None), "user", None)
    get_logger("unhandled").exception(
        "unhandled_exception",
        request_id=str(rid) if rid else None,
        http_method=str(request.method or "").upper() or None,
        path=str(request.url.path or ""),
        actor_id=getattr(actor, "user_id", None),
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()

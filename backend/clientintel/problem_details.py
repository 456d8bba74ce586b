from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict

from .settings import get_settings

PROBLEM_JSON = "application/problem+json"
PROBLEM_TYPE_PREFIX = "urn:clientintel:problem:"


class ProblemDetails(BaseModel):
    """RFC 7807 body. Members beyond the standard five go under `extensions`."""

    model_config = ConfigDict(extra="forbid")

    type: str = "about:blank"
    title: str
    status: int
    detail: str | None = None
    instance: str | None = None
    requestId: str | None = None
    errors: list[dict[str, Any]] | None = None
    extensions: dict[str, Any] | None = None


def default_title(status_code: int) -> str:
    try:
        return HTTPStatus(int(status_code)).phrase
    except ValueError:
        return "Internal Server Error" if int(status_code) >= 500 else "Error"


def problem_type(slug: str) -> str:
    s = str(slug or "").strip().lower()
    return f"{PROBLEM_TYPE_PREFIX}{s}" if s else "about:blank"


def _request_id(request: Request) -> str | None:
    rid = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    return str(rid) if rid else None


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    problem = ProblemDetails(
        type=type or "about:blank",
        title=title or default_title(status_code),
        status=int(status_code),
        detail=str(detail) if detail else None,
        instance=str(request.url.path or "") or None,
        requestId=_request_id(request),
        errors=errors or None,
        extensions=extensions or None,
    )
    return problem.model_dump(exclude_none=True)


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> ORJSONResponse:
    # Server-side failure text stays in the logs in production.
    if int(status_code) >= 500 and get_settings().is_production:
        detail = None
    return ORJSONResponse(
        status_code=int(status_code),
        content=problem_payload(
            request=request,
            status_code=status_code,
            title=title,
            detail=detail,
            type=type,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
    )

from __future__ import annotations

import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, TypeVar

from openai import OpenAI
from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..errors import EnrichmentFailure
from ..observability.logging import get_logger
from ..settings import settings
from .purposes import AiPurpose, max_tokens_for

log = get_logger("ai")

T = TypeVar("T", bound=BaseModel)


class AiError(EnrichmentFailure):
    pass


class AiNotConfigured(AiError):
    pass


class AiUpstreamError(AiError):
    pass


class AiParseError(AiError):
    pass


_CIRCUIT_LOCK = threading.Lock()
_CIRCUIT_OPEN_UNTIL: float = 0.0
_CONSECUTIVE_FAILURES: int = 0
_LAST_FAILURE_AT: float = 0.0


def _status_code(exc: Exception) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        v = getattr(exc, attr, None)
        if isinstance(v, int):
            return v
    resp = getattr(exc, "response", None)
    v = getattr(resp, "status_code", None)
    return v if isinstance(v, int) else None


def _is_upstream_outage(exc: Exception) -> bool:
    code = _status_code(exc)
    if code in (408, 409, 425, 429, 500, 502, 503, 504):
        return True
    msg = (str(exc) or "").lower()
    return any(k in msg for k in ("timeout", "timed out", "temporarily unavailable", "connection", "rate limit"))


def _circuit_check() -> None:
    now = time.time()
    with _CIRCUIT_LOCK:
        open_until = _CIRCUIT_OPEN_UNTIL
    if open_until and now < open_until:
        raise AiUpstreamError("ai_temporarily_unavailable")


def _circuit_record_success() -> None:
    global _CONSECUTIVE_FAILURES, _LAST_FAILURE_AT, _CIRCUIT_OPEN_UNTIL
    with _CIRCUIT_LOCK:
        _CONSECUTIVE_FAILURES = 0
        _LAST_FAILURE_AT = 0.0
        _CIRCUIT_OPEN_UNTIL = 0.0


def _circuit_record_failure(exc: Exception) -> None:
    """
    Basic circuit breaker:
    - After repeated upstream outages, open the circuit briefly so requests fail fast
      instead of each one waiting out the full timeout.
    """
    global _CONSECUTIVE_FAILURES, _LAST_FAILURE_AT, _CIRCUIT_OPEN_UNTIL
    if not _is_upstream_outage(exc):
        return
    now = time.time()
    # Route handlers run in a threadpool; the read-modify-write stays under the lock.
    with _CIRCUIT_LOCK:
        # If failures are spaced out, decay the counter.
        if _LAST_FAILURE_AT and (now - _LAST_FAILURE_AT) > 60:
            _CONSECUTIVE_FAILURES = 0
        _LAST_FAILURE_AT = now
        _CONSECUTIVE_FAILURES += 1
        if _CONSECUTIVE_FAILURES >= 5:
            _CIRCUIT_OPEN_UNTIL = now + 15


@dataclass(frozen=True)
class AiMeta:
    purpose: str
    model: str
    elapsed_ms: float
    response_id: str | None = None


def _client(*, timeout_s: float) -> Any:
    if not settings.openai_api_key:
        raise AiNotConfigured("OPENAI_API_KEY not configured")
    headers: dict[str, str] = {}
    # Force project routing if configured (matches OpenAI dashboard project id).
    if settings.openai_project_id and str(settings.openai_project_id).strip():
        headers["OpenAI-Project"] = str(settings.openai_project_id).strip()
    if settings.openai_organization_id and str(settings.openai_organization_id).strip():
        headers["OpenAI-Organization"] = str(settings.openai_organization_id).strip()
    # No SDK retries: a failed enrichment is surfaced to the caller as-is.
    return OpenAI(
        api_key=settings.openai_api_key,
        max_retries=0,
        timeout=max(1.0, float(timeout_s)),
        default_headers=headers or None,
    )


def _clip(s: str, max_len: int) -> str:
    s = str(s or "")
    if len(s) <= max_len:
        return s
    return s[:max_len]


def _normalize_messages(messages: list[dict[str, str]], max_chars: int) -> list[dict[str, str]]:
    # Guard against accidentally sending huge prompts (which can time out or explode costs).
    out: list[dict[str, str]] = []
    for m in messages or []:
        role = str(m.get("role") or "user")
        content = _clip(str(m.get("content") or ""), max_chars)
        out.append({"role": role, "content": content})
    return out


_OPEN_FENCE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_CLOSE_FENCE = re.compile(r"\n?[ \t]*```$")
_FENCED_BLOCK = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.S)


def strip_code_fences(text: str) -> str:
    """
    Remove a markdown code fence wrapped around the model output, or pull the
    first fenced block out of a reply that has chatter around it.

    Already-clean text comes back unchanged (modulo surrounding whitespace).
    """
    s = str(text or "").strip()
    if not s.startswith("```"):
        m = _FENCED_BLOCK.search(s)
        return m.group(1).strip() if m else s
    s = _OPEN_FENCE.sub("", s, count=1)
    s = _CLOSE_FENCE.sub("", s, count=1)
    return s.strip()


def parse_json_output(text: str, response_model: type[T]) -> T:
    """Fence-strip, decode and validate model output against `response_model`."""
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise AiParseError("empty_model_response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AiParseError(f"json_decode_error: {e}; output={_clip(cleaned, 2000)}") from e
    if not isinstance(data, dict):
        raise AiParseError(f"expected a JSON object; output={_clip(cleaned, 2000)}")
    try:
        return response_model.model_validate(data)
    except PydanticValidationError as e:
        raise AiParseError(f"schema_validation_error: {e}; output={_clip(cleaned, 2000)}") from e


def _completion_text(completion: Any) -> str:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    msg = getattr(choices[0], "message", None)
    return str(getattr(msg, "content", None) or "").strip()


def call_json(
    *,
    purpose: AiPurpose,
    response_model: type[T],
    messages: list[dict[str, str]],
    max_tokens: int | None = None,
    temperature: float = 0.2,
    timeout_s: float | None = None,
    max_prompt_chars: int = 60_000,
) -> tuple[T, AiMeta]:
    """Call OpenAI once and parse the reply into a Pydantic model.

    The provider gives no structured-output guarantee here: the reply is free text
    that should hold one JSON object, possibly fenced. Any failure (unconfigured,
    upstream error or timeout, empty reply, bad JSON, schema mismatch) raises an
    `AiError`, which is an `EnrichmentFailure`. There are no retries.
    """
    if not settings.openai_api_key:
        raise AiNotConfigured("OPENAI_API_KEY not configured")
    _circuit_check()

    mt = int(max_tokens or max_tokens_for(purpose))
    mt = int(min(mt, int(settings.openai_max_output_tokens_cap or mt)))
    model = settings.openai_model_for(purpose)
    client = _client(timeout_s=timeout_s if timeout_s is not None else settings.openai_timeout_s)
    msgs = _normalize_messages(messages, max_prompt_chars)

    start = time.perf_counter()
    try:
        completion = client.chat.completions.create(
            model=model,
            messages=msgs,
            max_completion_tokens=mt,
            temperature=temperature,
        )
    except Exception as e:
        _circuit_record_failure(e)
        log.warning(
            "ai_call_failed",
            purpose=purpose,
            model=model,
            error=str(e),
            status_code=_status_code(e),
        )
        raise AiUpstreamError(f"model call failed: {e}") from e
    _circuit_record_success()
    elapsed_ms = round((time.perf_counter() - start) * 1000.0, 2)

    content = _completion_text(completion)
    try:
        parsed = parse_json_output(content, response_model)
    except AiParseError as e:
        log.warning(
            "ai_json_failed",
            purpose=purpose,
            model=model,
            error=str(e),
            content_preview=_clip(content, 240),
        )
        raise

    log.info(
        "ai_call_ok",
        purpose=purpose,
        model=model,
        elapsed_ms=elapsed_ms,
        response_id=getattr(completion, "id", None),
    )
    return parsed, AiMeta(
        purpose=purpose,
        model=model,
        elapsed_ms=elapsed_ms,
        response_id=getattr(completion, "id", None),
    )

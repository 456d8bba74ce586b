from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from ..ai.client import call_json
from ..ai.context import json_section, pick
from ..ai.schemas import BatchSynthesisAI, TaskProposalAI
from ..domain.models import CAMPAIGN_TEAMS, TASK_PRIORITIES, SynthesisResult
from ..errors import PersistenceError, ReferenceNotFound, ValidationError
from ..observability.logging import get_logger
from ..repositories.campaigns_repo import get_campaign
from ..repositories.clients_repo import get_client
from ..repositories.opportunities_repo import create_opportunity
from ..repositories.projects_repo import get_project
from ..repositories.stakeholders_repo import get_stakeholder
from ..repositories.tasks_repo import create_task
from ..repositories.users_repo import get_user
from ..settings import settings
from .reference_resolver import guess_client
from .team_resolver import resolve_assignee

log = get_logger("batch_synthesis")

MAX_TASKS = 5
DEFAULT_TASK_TITLE = "Follow-up"
DEFAULT_OPPORTUNITY_TITLE = "Untitled Opportunity"

URGENT_TIME_HORIZON = "0-3 months"
URGENCY_KEYWORDS = (
    "urgent",
    "asap",
    "immediately",
    "renewal",
    "risk",
    "at risk",
    "deadline",
    "this quarter",
    "this month",
    "q1",
    "q2",
)
_URGENCY_RE = re.compile(r"\b(" + "|".join(re.escape(k) for k in URGENCY_KEYWORDS) + r")\b", re.I)


def _today() -> date:
    return datetime.now(timezone.utc).date()


# --- urgency + task normalization ---


def _item_text(item: dict[str, Any]) -> str:
    parts = [
        item.get("rawText"),
        item.get("rawResponse"),
        item.get("summary"),
        " ".join(str(t) for t in (item.get("themes") or [])),
    ]
    return " ".join(str(p) for p in parts if p)


def is_urgent(window: list[dict[str, Any]]) -> bool:
    """A batch is urgent if any item has a 0-3 month horizon or urgency wording."""
    for it in window or []:
        if str(it.get("timeHorizon") or "").strip().lower() == URGENT_TIME_HORIZON:
            return True
        if _URGENCY_RE.search(_item_text(it)):
            return True
    return False


def parse_due_date(value: str | None) -> date | None:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def normalize_due_date(
    value: str | None,
    *,
    today: date,
    urgent: bool,
    urgent_max_days: int | None = None,
) -> str | None:
    """
    Missing or unparsable -> None, urgent or not. Past -> today. Urgent
    batches are clamped to at most `urgent_max_days` out.
    """
    max_days = int(urgent_max_days if urgent_max_days is not None else settings.urgent_due_days_max)
    d = parse_due_date(value)
    if d is None:
        return None
    if d < today:
        d = today
    if urgent:
        d = min(d, today + timedelta(days=max_days))
    return d.isoformat()


@dataclass(frozen=True)
class NormalizedTask:
    title: str
    description: str | None
    assigned_to_team: str | None
    priority: str
    due_date: str | None


def normalize_task(task: TaskProposalAI, *, today: date, urgent: bool) -> NormalizedTask:
    pr = str(task.priority or "").strip().lower()
    return NormalizedTask(
        title=str(task.title or "").strip() or DEFAULT_TASK_TITLE,
        description=str(task.description or "").strip() or None,
        assigned_to_team=str(task.assignedToTeam or "").strip().lower() or None,
        priority=pr if pr in TASK_PRIORITIES else "medium",
        due_date=normalize_due_date(task.dueDate, today=today, urgent=urgent),
    )


# --- prompts ---

_SYNTHESIS_SYSTEM = (
    "You turn batches of field intelligence into sales opportunities for a consulting firm. "
    "Ignore irrelevant items completely and use only meaningful ones. "
    "Return ONLY one valid JSON object. No markdown, no code fences, no commentary."
)

_OUTPUT_CONTRACT = """Return JSON exactly in this shape:
{
  "opportunity": {"title": "string", "description": "string", "valueEstimate": "string | null"},
  "tasks": [
    {
      "title": "string",
      "description": "string | null",
      "assignedToTeam": "%s",
      "priority": "low | medium | high",
      "dueDate": "YYYY-MM-DD"
    }
  ]
}
Emit between 1 and 5 tasks."""


def _rules(*, urgent: bool, today: date) -> str:
    lines = [
        f"Today is {today.isoformat()}.",
        "If themes conflict across items, follow the majority.",
    ]
    if urgent:
        lines.append(
            "This batch is URGENT: at least one item signals a near-term need. "
            f"Every dueDate must be within {int(settings.urgent_due_days_max)} days of today."
        )
    else:
        lines.append("Pick realistic due dates for the work described.")
    return "\n".join(lines)


def _hydrate(ids: list[str | None], getter) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    seen: set[str] = set()
    for raw in ids:
        i = str(raw or "").strip()
        if not i or i in seen:
            continue
        seen.add(i)
        it = getter(i)
        if it:
            out.append(it)
    return out


# --- persistence ---


def _persist(
    *,
    parsed: BatchSynthesisAI,
    client_id: str,
    insight_id: str | None,
    campaign_id: str | None,
    fallback_user_id: str | None,
    urgent: bool,
    today: date,
) -> SynthesisResult:
    proposals = list(parsed.tasks)
    if len(proposals) > MAX_TASKS:
        log.info("synthesis_tasks_truncated", proposed=len(proposals), kept=MAX_TASKS)
        proposals = proposals[:MAX_TASKS]

    opp = parsed.opportunity
    opportunity = create_opportunity(
        client_id=client_id,
        title=str(opp.title or "").strip() or DEFAULT_OPPORTUNITY_TITLE,
        description=opp.description,
        value_estimate=opp.valueEstimate,
        insight_id=insight_id,
        campaign_id=campaign_id,
        stage="identified",
    )
    opportunity_id = str(opportunity["opportunityId"])

    task_ids: list[str] = []
    for idx, proposal in enumerate(proposals):
        t = normalize_task(proposal, today=today, urgent=urgent)
        try:
            assignee = resolve_assignee(t.assigned_to_team, fallback_user_id)
            created = create_task(
                opportunity_id=opportunity_id,
                insight_id=insight_id,
                assigned_to=assignee,
                assigned_to_team=t.assigned_to_team,
                title=t.title,
                description=t.description,
                priority=t.priority,
                due_date=t.due_date,
            )
        except PersistenceError as e:
            # Independent inserts: the opportunity and earlier tasks stay.
            log.warning(
                "task_insert_failed",
                opportunity_id=opportunity_id,
                index=idx,
                error=str(e),
            )
            continue
        task_ids.append(str(created["taskId"]))

    log.info(
        "batch_synthesized",
        client_id=client_id,
        campaign_id=campaign_id,
        opportunity_id=opportunity_id,
        tasks=len(task_ids),
        urgent=urgent,
    )
    return SynthesisResult(opportunity_id=opportunity_id, task_ids=task_ids)


# --- entry points ---


def synthesize_insight_batch(client_id: str, window: list[dict[str, Any]]) -> SynthesisResult:
    """
    Turn a window of approved insights (newest first) into one opportunity and
    up to five tasks.

    Raises EnrichmentFailure when the model output is unusable (nothing is
    written) and PersistenceError when the opportunity insert fails.
    """
    if not window:
        raise ValidationError("batch window is empty")
    cid = str(client_id or "").strip()
    client = get_client(cid) if cid else None
    if not client:
        raise ReferenceNotFound("client", cid)

    newest = window[0]
    today = _today()
    urgent = is_urgent(window)

    stakeholders = _hydrate([it.get("stakeholderId") for it in window], get_stakeholder)
    projects = _hydrate([it.get("projectId") for it in window], get_project)
    authors = _hydrate([it.get("authorId") for it in window], get_user)

    insights = [
        pick(
            it,
            "insightId",
            "authorId",
            "projectId",
            "stakeholderId",
            "rawText",
            "summary",
            "themes",
            "timeHorizon",
            "budgetSignal",
            "competitorMention",
            "approvedAt",
        )
        for it in window
    ]
    user = "\n\n".join(
        [
            f"Generate ONE opportunity and its follow-up tasks for client: {client.get('name')}",
            _rules(urgent=urgent, today=today),
            _OUTPUT_CONTRACT % "team name of the best-suited staff (e.g. sales, consulting)",
            json_section("CLIENT", pick(client, "clientId", "name", "industry", "description")),
            json_section("INSIGHTS (newest first)", insights, max_chars=20_000),
            json_section("STAKEHOLDERS", [pick(s, "stakeholderId", "name", "role") for s in stakeholders]),
            json_section("PROJECTS", [pick(p, "projectId", "name", "status") for p in projects]),
            json_section("AUTHORS", [pick(a, "userId", "fullName", "role", "team") for a in authors]),
        ]
    )
    parsed, _meta = call_json(
        purpose="insight_synthesis",
        response_model=BatchSynthesisAI,
        messages=[{"role": "system", "content": _SYNTHESIS_SYSTEM}, {"role": "user", "content": user}],
    )
    return _persist(
        parsed=parsed,
        client_id=cid,
        insight_id=str(newest.get("insightId") or "") or None,
        campaign_id=None,
        fallback_user_id=newest.get("authorId"),
        urgent=urgent,
        today=today,
    )


def synthesize_campaign_batch(campaign_id: str, window: list[dict[str, Any]]) -> SynthesisResult:
    """
    Same as `synthesize_insight_batch`, for a window of campaign responses.

    The client comes from the newest response, else is guessed from its text.
    Without a client nothing is written and the result is `skipped`.
    """
    if not window:
        raise ValidationError("batch window is empty")
    camp_id = str(campaign_id or "").strip()
    campaign = get_campaign(camp_id) if camp_id else None
    if not campaign:
        raise ReferenceNotFound("campaign", camp_id)

    newest = window[0]
    client = None
    if newest.get("clientId"):
        client = get_client(str(newest["clientId"]))
    if not client:
        client = guess_client(newest.get("rawResponse"))
    if not client:
        log.warning("campaign_batch_skipped", campaign_id=camp_id, reason="no_client")
        return SynthesisResult(skipped=True)

    today = _today()
    urgent = is_urgent(window)
    authors = _hydrate([it.get("userId") for it in window], get_user)
    responses = [
        pick(it, "responseId", "userId", "rawResponse", "summary", "themes", "createdAt") for it in window
    ]
    user = "\n\n".join(
        [
            f"Generate ONE opportunity and its follow-up tasks for client: {client.get('name')}",
            "The items are responses to a leadership campaign. "
            "Team 'manager' means sales manager; 'leader' means executive leadership.",
            _rules(urgent=urgent, today=today),
            _OUTPUT_CONTRACT % " | ".join(CAMPAIGN_TEAMS),
            json_section("CAMPAIGN", pick(campaign, "campaignId", "topic", "description", "questions")),
            json_section("CLIENT", pick(client, "clientId", "name", "industry", "description")),
            json_section("RESPONSES (newest first)", responses, max_chars=20_000),
            json_section("AUTHORS", [pick(a, "userId", "fullName", "role", "team") for a in authors]),
        ]
    )
    parsed, _meta = call_json(
        purpose="campaign_synthesis",
        response_model=BatchSynthesisAI,
        messages=[{"role": "system", "content": _SYNTHESIS_SYSTEM}, {"role": "user", "content": user}],
    )
    return _persist(
        parsed=parsed,
        client_id=str(client["clientId"]),
        insight_id=None,
        campaign_id=camp_id,
        fallback_user_id=newest.get("userId"),
        urgent=urgent,
        today=today,
    )

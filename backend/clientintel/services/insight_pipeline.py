from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..domain.models import (
    INSIGHT_APPROVED,
    INSIGHT_PENDING,
    INSIGHT_REJECTED,
    Actor,
    ApprovalResult,
    BatchOutcome,
    SubmissionResult,
)
from ..errors import (
    ApprovalNotPermitted,
    EnrichmentFailure,
    BatchWindowIncomplete,
    InvalidTransition,
    PersistenceError,
    ReferenceNotFound,
    ValidationError,
)
from ..observability.logging import get_logger
from ..repositories.clients_repo import get_client
from ..repositories.insights_repo import (
    approve_pending_insight,
    build_insight_item,
    create_approved_insight,
    create_pending_insight,
    get_insight,
    list_approved_window,
    reject_pending_insight,
)
from ..repositories.projects_repo import get_project
from ..repositories.stakeholders_repo import get_stakeholder
from ..settings import settings
from .batch_synthesis import synthesize_insight_batch
from .batch_trigger import should_trigger, window_bounds
from .batch_window import collect_window
from .enrichment_service import enrich_insight

log = get_logger("insight_pipeline")


def can_approve(actor: Actor, insight: dict[str, Any]) -> bool:
    if str(insight.get("authorId") or "") == str(actor.user_id):
        return True
    return str(actor.role or "").strip().lower() in settings.elevated_role_set


def _check_owned_reference(kind: str, ref: dict[str, Any] | None, ref_id: str, client_id: str) -> None:
    if not ref or str(ref.get("clientId") or "") != client_id:
        raise ReferenceNotFound(kind, ref_id)


def run_insight_batch(
    client_id: str,
    new_count: int,
    *,
    newest_id: str,
    newest: dict[str, Any] | None = None,
) -> BatchOutcome:
    """
    Synthesize the batch closed by `new_count`, if any.

    `newest` is the insight whose approval closed the batch; when not given it
    is read back by key. Runs after the counter commit, so failures are logged
    and swallowed: the caller's write already happened.
    """
    if not should_trigger(new_count):
        return BatchOutcome(new_count=new_count, batch_triggered=False)

    lo, hi = window_bounds(new_count)
    log.info("batch_triggered", client_id=client_id, new_count=new_count, seq_from=lo, seq_to=hi)
    try:
        top = newest if newest is not None else get_insight(newest_id)
        if not top:
            raise BatchWindowIncomplete([hi])
        window = collect_window(
            lambda a, b: list_approved_window(client_id=client_id, seq_from=a, seq_to=b),
            new_count=new_count,
            newest=top,
            seq_attr="approvalSeq",
        )
        result = synthesize_insight_batch(client_id, window)
    except (EnrichmentFailure, PersistenceError) as e:
        log.warning(
            "batch_synthesis_failed",
            client_id=client_id,
            new_count=new_count,
            error_type=type(e).__name__,
            error=str(e),
        )
        return BatchOutcome(new_count=new_count, batch_triggered=True)
    return BatchOutcome(
        new_count=new_count,
        batch_triggered=True,
        opportunity_id=result.opportunity_id,
        task_ids=list(result.task_ids),
    )


def create_insight(
    actor: Actor,
    client_id: str | None,
    raw_text: str | None,
    project_id: str | None = None,
    stakeholder_id: str | None = None,
) -> SubmissionResult:
    """
    Enrich and store one insight. Enrichment is mandatory: if it fails, nothing
    is written. With auto-approve on, the insight is stored approved and the
    client's counter moves in the same transaction.
    """
    text = str(raw_text or "").strip()
    if not text:
        raise ValidationError("rawText is required")
    cid = str(client_id or "").strip()
    if not cid:
        raise ValidationError("clientId is required")
    if not get_client(cid):
        raise ReferenceNotFound("client", cid)

    pid = str(project_id or "").strip() or None
    sid = str(stakeholder_id or "").strip() or None
    if pid:
        _check_owned_reference("project", get_project(pid), pid, cid)
    if sid:
        _check_owned_reference("stakeholder", get_stakeholder(sid), sid, cid)

    enrichment = enrich_insight(cid, text)
    fields: dict[str, Any] = {
        "summary": enrichment.summary,
        "themes": list(enrichment.themes),
        "timeHorizon": enrichment.timeHorizon,
        "budgetSignal": enrichment.budgetSignal,
        "competitorMention": enrichment.competitorMention,
        # Explicit ids win over the model's picks.
        "projectId": pid or enrichment.selectedProjectId,
        "stakeholderId": sid or enrichment.selectedStakeholderId,
    }

    item = build_insight_item(
        author_id=actor.user_id,
        client_id=cid,
        raw_text=text,
        enrichment=fields,
        project_id=fields["projectId"],
        stakeholder_id=fields["stakeholderId"],
    )

    if not settings.insight_auto_approve:
        insight = create_pending_insight(item)
        log.info("insight_created", insight_id=insight["insightId"], client_id=cid, status=INSIGHT_PENDING)
        return SubmissionResult(id=insight["insightId"], enriched_fields=fields, status=INSIGHT_PENDING)

    insight, new_count = create_approved_insight(item, approved_by=actor.user_id)
    log.info(
        "insight_created",
        insight_id=insight["insightId"],
        client_id=cid,
        status=INSIGHT_APPROVED,
        new_count=new_count,
    )
    batch = run_insight_batch(cid, new_count, newest_id=insight["insightId"], newest=insight)
    return SubmissionResult(
        id=insight["insightId"],
        enriched_fields=fields,
        status=INSIGHT_APPROVED,
        batch=batch,
    )


def approve_insight(actor: Actor, insight_id: str | None) -> ApprovalResult:
    iid = str(insight_id or "").strip()
    if not iid:
        raise ValidationError("insightId is required")
    insight = get_insight(iid)
    if not insight:
        raise ReferenceNotFound("insight", iid)
    if not can_approve(actor, insight):
        raise ApprovalNotPermitted("Only the author or an elevated role may approve this insight")

    status = str(insight.get("status") or "")
    if status == INSIGHT_REJECTED:
        raise InvalidTransition("Insight was rejected and cannot be approved")
    if status == INSIGHT_APPROVED:
        return ApprovalResult(approved=False)

    cid = str(insight.get("clientId") or "")
    new_count = approve_pending_insight(insight_id=iid, client_id=cid, approved_by=actor.user_id)
    if new_count is None:
        # Lost the race on the insight itself: someone else moved it first.
        current = get_insight(iid) or {}
        if current.get("status") == INSIGHT_REJECTED:
            raise InvalidTransition("Insight was rejected and cannot be approved")
        log.info("insight_already_approved", insight_id=iid, client_id=cid)
        return ApprovalResult(approved=False)

    log.info("insight_approved", insight_id=iid, client_id=cid, new_count=new_count, by=actor.user_id)
    batch = run_insight_batch(cid, new_count, newest_id=iid)
    return ApprovalResult(
        approved=True,
        batch_triggered=batch.batch_triggered,
        new_count=new_count,
        opportunity_id=batch.opportunity_id,
        task_ids=list(batch.task_ids),
    )


def reject_insight(actor: Actor, insight_id: str | None) -> dict[str, Any]:
    iid = str(insight_id or "").strip()
    if not iid:
        raise ValidationError("insightId is required")
    insight = get_insight(iid)
    if not insight:
        raise ReferenceNotFound("insight", iid)
    if not can_approve(actor, insight):
        raise ApprovalNotPermitted("Only the author or an elevated role may reject this insight")
    if insight.get("status") != INSIGHT_PENDING:
        raise InvalidTransition(f"Insight is {insight.get('status')}, not pending")

    try:
        updated = reject_pending_insight(insight_id=iid, rejected_by=actor.user_id)
    except DdbConflict as e:
        raise InvalidTransition("Insight is no longer pending") from e
    log.info("insight_rejected", insight_id=iid, client_id=insight.get("clientId"), by=actor.user_id)
    return updated or {}

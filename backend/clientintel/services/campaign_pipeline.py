from __future__ import annotations

from typing import Any

from ..domain.models import Actor, BatchOutcome, SubmissionResult
from ..errors import (
    EnrichmentFailure,
    InvalidTransition,
    PersistenceError,
    ReferenceNotFound,
    ValidationError,
)
from ..observability.logging import get_logger
from ..repositories.campaigns_repo import create_response, get_campaign, list_response_window
from ..repositories.clients_repo import get_client
from .batch_synthesis import synthesize_campaign_batch
from .batch_trigger import batch_number, should_trigger, window_bounds
from .batch_window import collect_window
from .enrichment_service import enrich_campaign_response

log = get_logger("campaign_pipeline")


def run_campaign_batch(campaign_id: str, new_count: int, newest: dict[str, Any]) -> BatchOutcome:
    """Best-effort synthesis of the batch `newest` closed, if it closed one."""
    if not should_trigger(new_count):
        return BatchOutcome(new_count=new_count, batch_triggered=False)

    lo, hi = window_bounds(new_count)
    log.info("batch_triggered", campaign_id=campaign_id, new_count=new_count, seq_from=lo, seq_to=hi)
    try:
        window = collect_window(
            lambda a, b: list_response_window(campaign_id=campaign_id, seq_from=a, seq_to=b),
            new_count=new_count,
            newest=newest,
            seq_attr="responseSeq",
        )
        result = synthesize_campaign_batch(campaign_id, window)
    except (EnrichmentFailure, PersistenceError) as e:
        log.warning(
            "batch_synthesis_failed",
            campaign_id=campaign_id,
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


def submit_campaign_response(
    actor: Actor,
    campaign_id: str | None,
    raw_response: str | None,
    client_id: str | None = None,
) -> SubmissionResult:
    """
    Enrich and store a campaign response, then bump the campaign's response
    count. Every fifth response closes a batch and is synthesized best-effort.
    """
    text = str(raw_response or "").strip()
    if not text:
        raise ValidationError("rawResponse is required")
    camp_id = str(campaign_id or "").strip()
    if not camp_id:
        raise ValidationError("campaignId is required")
    campaign = get_campaign(camp_id)
    if not campaign:
        raise ReferenceNotFound("campaign", camp_id)
    if str(campaign.get("status") or "active") != "active":
        raise InvalidTransition("Campaign is closed")
    cid = str(client_id or "").strip() or None
    if cid and not get_client(cid):
        raise ReferenceNotFound("client", cid)

    enrichment = enrich_campaign_response(text)
    fields = {"summary": enrichment.summary, "themes": list(enrichment.themes)}

    response, new_count = create_response(
        campaign_id=camp_id,
        user_id=actor.user_id,
        raw_response=text,
        enrichment=fields,
        client_id=cid,
    )
    log.info(
        "campaign_response_created",
        response_id=response["responseId"],
        campaign_id=camp_id,
        new_count=new_count,
    )
    batch = run_campaign_batch(camp_id, new_count, response)
    return SubmissionResult(
        id=response["responseId"],
        enriched_fields=fields,
        status="submitted",
        batch=batch,
        batch_number=batch_number(new_count),
    )

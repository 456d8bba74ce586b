from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..domain.models import Actor
from ..services.insight_pipeline import approve_insight, create_insight, reject_insight
from .deps import get_actor

router = APIRouter(tags=["insights"])


class CreateInsightRequest(BaseModel):
    # Required fields are checked by the pipeline so a missing one is a 400.
    clientId: str | None = None
    rawText: str | None = None
    projectId: str | None = None
    stakeholderId: str | None = None


@router.post("/insights")
def create(body: CreateInsightRequest, actor: Actor = Depends(get_actor)):
    result = create_insight(
        actor,
        body.clientId,
        body.rawText,
        project_id=body.projectId,
        stakeholder_id=body.stakeholderId,
    )
    return {"ok": True, **result.to_api()}


@router.post("/insights/{insightId}/approve")
def approve(insightId: str, actor: Actor = Depends(get_actor)):
    return {"ok": True, **approve_insight(actor, insightId).to_api()}


@router.post("/insights/{insightId}/reject")
def reject(insightId: str, actor: Actor = Depends(get_actor)):
    return {"ok": True, "insight": reject_insight(actor, insightId)}

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..domain.models import Actor
from ..services.campaign_pipeline import submit_campaign_response
from .deps import get_actor

router = APIRouter(tags=["campaigns"])


class CampaignResponseRequest(BaseModel):
    rawResponse: str | None = None
    clientId: str | None = None


@router.post("/campaigns/{campaignId}/respond")
def respond(campaignId: str, body: CampaignResponseRequest, actor: Actor = Depends(get_actor)):
    result = submit_campaign_response(
        actor,
        campaignId,
        body.rawResponse,
        client_id=body.clientId,
    )
    return {"ok": True, **result.to_api()}

from __future__ import annotations

from typing import Any

from ..ai.client import call_json
from ..ai.context import json_section, pick
from ..ai.schemas import CampaignEnrichmentAI, InsightEnrichmentAI
from ..errors import ReferenceNotFound, ValidationError
from ..observability.logging import get_logger
from ..repositories.clients_repo import get_client
from ..repositories.projects_repo import list_projects_for_client
from ..repositories.stakeholders_repo import list_stakeholders_for_client
from .reference_resolver import search_references

log = get_logger("enrichment")

InsightEnrichment = InsightEnrichmentAI
CampaignEnrichment = CampaignEnrichmentAI

_JSON_ONLY_SYSTEM = (
    "You extract structured data for a consulting firm's client intelligence system. "
    "Return ONLY one valid JSON object. No markdown, no code fences, no commentary."
)


def _require_text(raw_text: str | None, field: str) -> str:
    s = str(raw_text or "").strip()
    if not s:
        raise ValidationError(f"{field} is required")
    return s


def _insight_messages(
    *,
    raw_text: str,
    client: dict[str, Any],
    projects: list[dict[str, Any]],
    stakeholders: list[dict[str, Any]],
) -> list[dict[str, str]]:
    user = "\n\n".join(
        [
            "Extract structured insight data from the field note below.",
            f"RAW TEXT:\n{raw_text}",
            json_section("CLIENT", pick(client, "clientId", "name", "industry", "description")),
            json_section(
                "PROJECTS",
                [pick(p, "projectId", "name", "description", "status") for p in projects],
            ),
            json_section(
                "STAKEHOLDERS",
                [pick(s, "stakeholderId", "name", "role", "notes") for s in stakeholders],
            ),
            "\n".join(
                [
                    "Return JSON with exactly these keys:",
                    '- summary: 1-2 sentences',
                    "- themes: list of short themes",
                    '- timeHorizon: one of "0-3 months", "3-6 months", "6-12 months", "12+ months"',
                    '- budgetSignal: one of "low", "medium", "high"',
                    "- competitorMention: competitor name, or null",
                    "- selectedProjectId: a projectId from PROJECTS, or null",
                    "- selectedStakeholderId: a stakeholderId from STAKEHOLDERS, or null",
                ]
            ),
        ]
    )
    return [{"role": "system", "content": _JSON_ONLY_SYSTEM}, {"role": "user", "content": user}]


def enrich_insight(client_id: str | None, raw_text: str | None) -> InsightEnrichment:
    """
    Enrich one insight using the client's stakeholders and projects as context.

    Raises ValidationError / ReferenceNotFound before any model call, and
    EnrichmentFailure when the model output is unusable. Never writes.
    """
    text = _require_text(raw_text, "rawText")
    cid = str(client_id or "").strip()
    if not cid:
        raise ValidationError("clientId is required")
    client = get_client(cid)
    if not client:
        raise ReferenceNotFound("client", cid)

    stakeholders = list_stakeholders_for_client(cid)
    projects = list_projects_for_client(cid)

    parsed, meta = call_json(
        purpose="insight_enrichment",
        response_model=InsightEnrichmentAI,
        messages=_insight_messages(
            raw_text=text, client=client, projects=projects, stakeholders=stakeholders
        ),
    )

    # Only ids that exist for this client survive.
    project_ids = {str(p.get("projectId")) for p in projects}
    stakeholder_ids = {str(s.get("stakeholderId")) for s in stakeholders}
    updates: dict[str, Any] = {}
    if parsed.selectedProjectId and parsed.selectedProjectId not in project_ids:
        updates["selectedProjectId"] = None
    if parsed.selectedStakeholderId and parsed.selectedStakeholderId not in stakeholder_ids:
        updates["selectedStakeholderId"] = None
    if updates:
        log.info("insight_enrichment_ids_dropped", client_id=cid, dropped=sorted(updates))
        parsed = parsed.model_copy(update=updates)

    log.info(
        "insight_enriched",
        client_id=cid,
        model=meta.model,
        elapsed_ms=meta.elapsed_ms,
        themes=len(parsed.themes),
    )
    return parsed


def enrich_campaign_response(raw_text: str | None) -> CampaignEnrichment:
    """Enrich one campaign response. Fuzzy name matches are passed as weak hints."""
    text = _require_text(raw_text, "rawResponse")
    refs = search_references(text)

    user = "\n\n".join(
        [
            "Extract structured meaning from a consultant's response to a leadership campaign.",
            f"RAW RESPONSE:\n{text}",
            "FUZZY MATCHES (may be wrong; use only if clearly relevant):",
            json_section("Clients", [pick(c, "clientId", "name") for c in refs.clients]),
            json_section("Projects", [pick(p, "projectId", "name") for p in refs.projects]),
            json_section(
                "Stakeholders", [pick(s, "stakeholderId", "name", "role") for s in refs.stakeholders]
            ),
            "Return JSON with exactly these keys:\n- summary: 1-2 sentences\n- themes: list of short themes",
        ]
    )
    parsed, meta = call_json(
        purpose="campaign_enrichment",
        response_model=CampaignEnrichmentAI,
        messages=[{"role": "system", "content": _JSON_ONLY_SYSTEM}, {"role": "user", "content": user}],
    )
    log.info(
        "campaign_response_enriched",
        model=meta.model,
        elapsed_ms=meta.elapsed_ms,
        hints=len(refs.clients) + len(refs.projects) + len(refs.stakeholders),
    )
    return parsed

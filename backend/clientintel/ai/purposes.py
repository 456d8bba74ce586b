"""
Central inventory of AI purposes used across the pipeline.

Purpose strings drive model routing (Settings.openai_model_for), log fields,
and output token defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


AiPurpose = Literal[
    # Per-submission enrichment
    "insight_enrichment",
    "campaign_enrichment",
    # Batch synthesis (one opportunity + tasks per batch)
    "insight_synthesis",
    "campaign_synthesis",
]


@dataclass(frozen=True)
class PurposeDefaults:
    max_tokens_default: int


PURPOSE_DEFAULTS: dict[str, PurposeDefaults] = {
    "insight_enrichment": PurposeDefaults(max_tokens_default=800),
    "campaign_enrichment": PurposeDefaults(max_tokens_default=700),
    "insight_synthesis": PurposeDefaults(max_tokens_default=1500),
    "campaign_synthesis": PurposeDefaults(max_tokens_default=1500),
}


def max_tokens_for(purpose: str) -> int:
    d = PURPOSE_DEFAULTS.get(str(purpose or "").strip().lower())
    return d.max_tokens_default if d else 1200

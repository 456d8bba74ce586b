from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


TimeHorizon = Literal["0-3 months", "3-6 months", "6-12 months", "12+ months"]
BudgetSignal = Literal["low", "medium", "high"]


def _blank_to_none(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, str):
        s = v.strip()
        if not s or s.lower() in ("null", "none", "n/a"):
            return None
        return s
    return v


def _as_optional_str(v: Any) -> str | None:
    v = _blank_to_none(v)
    if v is None:
        return None
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        return v
    raise ValueError("expected a string")


def _themes_list(v: Any) -> list[str]:
    # Models return either a JSON list or a comma-joined string.
    if v is None:
        return []
    if isinstance(v, str):
        parts = v.split(",")
    elif isinstance(v, (list, tuple)):
        parts = [str(x) for x in v if x is not None]
    else:
        raise ValueError("themes must be a list of strings or a comma-separated string")
    return [p.strip() for p in parts if p and p.strip()]


def _lower_str(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


# --- per-submission enrichment ---


class InsightEnrichmentAI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1)
    themes: list[str]
    timeHorizon: TimeHorizon
    budgetSignal: BudgetSignal
    competitorMention: str | None = None
    selectedProjectId: str | None = None
    selectedStakeholderId: str | None = None

    @field_validator("summary", mode="before")
    @classmethod
    def _strip_summary(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("themes", mode="before")
    @classmethod
    def _normalize_themes(cls, v: Any) -> list[str]:
        return _themes_list(v)

    @field_validator("timeHorizon", "budgetSignal", mode="before")
    @classmethod
    def _normalize_enum(cls, v: Any) -> Any:
        return _lower_str(v)

    @field_validator("competitorMention", "selectedProjectId", "selectedStakeholderId", mode="before")
    @classmethod
    def _optional_str(cls, v: Any) -> str | None:
        return _as_optional_str(v)


class CampaignEnrichmentAI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(min_length=1)
    themes: list[str]

    @field_validator("summary", mode="before")
    @classmethod
    def _strip_summary(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("themes", mode="before")
    @classmethod
    def _normalize_themes(cls, v: Any) -> list[str]:
        return _themes_list(v)


# --- batch synthesis ---
# Individual fields are lenient on purpose: a malformed task is normalized
# (default title, medium priority, no due date) rather than failing the batch.


class OpportunityProposalAI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    description: str | None = None
    valueEstimate: str | None = None

    @field_validator("title", "description", "valueEstimate", mode="before")
    @classmethod
    def _optional_str(cls, v: Any) -> str | None:
        return _as_optional_str(v)


class TaskProposalAI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    description: str | None = None
    assignedToTeam: str | None = None
    priority: str | None = None
    dueDate: str | None = None

    @field_validator("title", "description", "assignedToTeam", "priority", "dueDate", mode="before")
    @classmethod
    def _optional_str(cls, v: Any) -> str | None:
        if isinstance(v, (list, dict)):
            return None
        return _as_optional_str(v)


class BatchSynthesisAI(BaseModel):
    model_config = ConfigDict(extra="ignore")

    opportunity: OpportunityProposalAI
    tasks: list[TaskProposalAI] = Field(min_length=1)

    @field_validator("tasks", mode="before")
    @classmethod
    def _coerce_tasks(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        out: list[Any] = []
        for t in v:
            if isinstance(t, dict):
                out.append(t)
            elif isinstance(t, str) and t.strip():
                out.append({"title": t.strip()})
        return out

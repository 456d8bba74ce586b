from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

INSIGHT_PENDING = "pending"
INSIGHT_APPROVED = "approved"
INSIGHT_REJECTED = "rejected"

OPPORTUNITY_STAGES = ("identified", "qualified", "in-progress", "closed")
TASK_PRIORITIES = ("low", "medium", "high")
TASK_STATUSES = ("open", "in-progress", "done")

CAMPAIGN_TEAMS = ("sales", "consulting", "leader", "manager")


@dataclass(frozen=True)
class Actor:
    """The authenticated caller. Trusted as already validated upstream."""

    user_id: str
    role: str | None = None
    team: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any] | None) -> "Actor | None":
        c = claims if isinstance(claims, dict) else {}
        uid = str(c.get("userId") or c.get("id") or c.get("sub") or "").strip()
        if not uid:
            return None
        role = str(c.get("role") or "").strip() or None
        team = str(c.get("team") or "").strip() or None
        return cls(user_id=uid, role=role, team=team)


@dataclass(frozen=True)
class ReferenceMatches:
    clients: list[dict[str, Any]] = field(default_factory=list)
    stakeholders: list[dict[str, Any]] = field(default_factory=list)
    projects: list[dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.clients or self.stakeholders or self.projects)


@dataclass(frozen=True)
class SynthesisResult:
    opportunity_id: str | None = None
    task_ids: list[str] = field(default_factory=list)
    skipped: bool = False

    def to_api(self) -> dict[str, Any]:
        return {"opportunityId": self.opportunity_id, "taskIds": list(self.task_ids)}


@dataclass(frozen=True)
class BatchOutcome:
    """What happened to the counter on one submission or approval."""

    new_count: int
    batch_triggered: bool
    opportunity_id: str | None = None
    task_ids: list[str] = field(default_factory=list)

    def to_api(self) -> dict[str, Any]:
        return {
            "newCount": self.new_count,
            "batchTriggered": self.batch_triggered,
            "opportunityId": self.opportunity_id,
            "taskIds": list(self.task_ids),
        }


@dataclass(frozen=True)
class ApprovalResult:
    approved: bool
    batch_triggered: bool = False
    new_count: int | None = None
    opportunity_id: str | None = None
    task_ids: list[str] = field(default_factory=list)

    def to_api(self) -> dict[str, Any]:
        return {
            "approved": self.approved,
            "batchTriggered": self.batch_triggered,
            "newCount": self.new_count,
            "opportunityId": self.opportunity_id,
            "taskIds": list(self.task_ids),
        }


@dataclass(frozen=True)
class SubmissionResult:
    id: str
    enriched_fields: dict[str, Any]
    status: str
    batch: BatchOutcome | None = None
    batch_number: int | None = None

    def to_api(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "enrichedFields": dict(self.enriched_fields),
            "status": self.status,
            "batch": self.batch.to_api() if self.batch else None,
        }
        if self.batch_number is not None:
            out["batchNumber"] = self.batch_number
        return out

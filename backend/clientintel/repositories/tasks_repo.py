from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from ..domain.models import TASK_PRIORITIES, TASK_STATUSES
from .common import new_id, now_iso, profile_key, strip_keys


def task_key(task_id: str) -> dict[str, str]:
    return profile_key("TASK", task_id, label="task_id")


def _opportunity_tasks_gsi_pk(opportunity_id: str) -> str:
    oid = str(opportunity_id or "").strip()
    if not oid:
        raise ValueError("opportunity_id is required")
    return f"OPPORTUNITY_TASKS#{oid}"


def _due_sort_value(due_date: str | None) -> str:
    # Stable max sentinel so tasks without a due date sort last.
    d = str(due_date or "").strip()
    return d or "9999-12-31"


def normalize_task_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return strip_keys(item, id_field="taskId")


def _build_task_item(
    *,
    task_id: str,
    opportunity_id: str,
    insight_id: str | None,
    assigned_to: str | None,
    assigned_to_team: str | None,
    title: str,
    description: str | None,
    priority: str,
    status: str,
    due_date: str | None,
) -> dict[str, Any]:
    now = now_iso()
    tid = str(task_id or "").strip()
    oid = str(opportunity_id or "").strip()
    pr = str(priority or "medium").strip().lower()
    if pr not in TASK_PRIORITIES:
        raise ValueError(f"invalid priority: {priority}")
    st = str(status or "open").strip().lower()
    if st not in TASK_STATUSES:
        raise ValueError(f"invalid status: {status}")

    return {
        **task_key(tid),
        "entityType": "Task",
        "taskId": tid,
        "opportunityId": oid,
        "insightId": str(insight_id or "").strip() or None,
        "assignedTo": str(assigned_to or "").strip() or None,
        "assignedToTeam": str(assigned_to_team or "").strip().lower() or None,
        "title": str(title or "").strip(),
        "description": str(description or "").strip() or None,
        "priority": pr,
        "status": st,
        "dueDate": str(due_date).strip() if due_date else None,
        "createdAt": now,
        "updatedAt": now,
        # GSI1: tasks for an opportunity, by due date
        "gsi1pk": _opportunity_tasks_gsi_pk(oid),
        "gsi1sk": f"{_due_sort_value(due_date)}#{tid}",
    }


def create_task(
    *,
    opportunity_id: str,
    title: str,
    insight_id: str | None = None,
    assigned_to: str | None = None,
    assigned_to_team: str | None = None,
    description: str | None = None,
    priority: str = "medium",
    status: str = "open",
    due_date: str | None = None,
    task_id: str | None = None,
) -> dict[str, Any]:
    item = _build_task_item(
        task_id=str(task_id or "").strip() or new_id(),
        opportunity_id=opportunity_id,
        insight_id=insight_id,
        assigned_to=assigned_to,
        assigned_to_team=assigned_to_team,
        title=title,
        description=description,
        priority=priority,
        status=status,
        due_date=due_date,
    )
    get_main_table().put_item(item=item, condition_expression="attribute_not_exists(pk)")
    return normalize_task_for_api(item) or {}


def get_task(task_id: str) -> dict[str, Any] | None:
    it = get_main_table().get_item(key=task_key(task_id))
    return normalize_task_for_api(it)


def list_tasks_for_opportunity(opportunity_id: str) -> list[dict[str, Any]]:
    oid = str(opportunity_id or "").strip()
    if not oid:
        return []
    items = get_main_table().query_all(
        index_name="GSI1",
        key_condition_expression=Key("gsi1pk").eq(_opportunity_tasks_gsi_pk(oid)),
        scan_index_forward=True,
    )
    return [n for n in (normalize_task_for_api(it) for it in items) if n]

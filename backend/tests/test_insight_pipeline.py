from __future__ import annotations

import threading

import pytest

from fakes import enrichment_json, synthesis_json


def _actor(user_id: str = "u-author", role: str | None = "consultant"):
    from clientintel.domain.models import Actor

    return Actor(user_id=user_id, role=role)


def _seed(table):
    from clientintel.repositories.clients_repo import create_client
    from clientintel.repositories.projects_repo import create_project
    from clientintel.repositories.stakeholders_repo import create_stakeholder

    create_client(name="Client X", client_id="cx")
    create_project(client_id="cx", name="Pilot", project_id="p1")
    create_project(client_id="cx", name="Platform", project_id="p2")
    create_stakeholder(client_id="cx", name="Pat", stakeholder_id="s1")
    create_client(name="Other", client_id="other")
    create_project(client_id="other", name="Elsewhere", project_id="p-other")


def _pending_mode(monkeypatch):
    from clientintel.settings import settings

    monkeypatch.setattr(settings, "insight_auto_approve", False)


def _create_pending(model, n: int, actor=None) -> list[str]:
    from clientintel.services.insight_pipeline import create_insight

    ids: list[str] = []
    for i in range(n):
        model.queue(enrichment_json(summary=f"Note {i + 1}"))
        res = create_insight(actor or _actor(), "cx", f"Field note number {i + 1}")
        assert res.status == "pending"
        ids.append(res.id)
    return ids


def test_create_stores_enrichment_and_moves_counter(table, model):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.repositories.insights_repo import get_insight
    from clientintel.services.insight_pipeline import create_insight

    _seed(table)
    model.queue(enrichment_json(themes=["pilot", "budget"], competitorMention="Initech", selectedProjectId="p1"))
    res = create_insight(_actor(), "cx", "Client X wants a Q1 pilot, budget confirmed high")

    assert res.status == "approved"
    assert res.batch is not None and res.batch.new_count == 1 and res.batch.batch_triggered is False

    stored = get_insight(res.id)
    assert stored["status"] == "approved"
    assert stored["approvalSeq"] == 1
    assert stored["authorId"] == "u-author"
    for k in ("summary", "themes", "timeHorizon", "budgetSignal", "competitorMention"):
        assert stored[k] == res.enriched_fields[k]
    assert stored["projectId"] == "p1"
    assert get_approved_count("cx") == 1


def test_enrichment_failure_writes_no_insight(table, model):
    from clientintel.errors import EnrichmentFailure
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services.insight_pipeline import create_insight

    _seed(table)
    model.queue("Sorry, I cannot help with that.")
    with pytest.raises(EnrichmentFailure):
        create_insight(_actor(), "cx", "note")
    assert table.of_type("Insight") == []
    assert get_approved_count("cx") == 0


def test_validation_and_missing_client_fail_before_enrichment(table, model):
    from clientintel.errors import ReferenceNotFound, ValidationError
    from clientintel.services.insight_pipeline import create_insight

    _seed(table)
    with pytest.raises(ValidationError):
        create_insight(_actor(), "cx", "")
    with pytest.raises(ValidationError):
        create_insight(_actor(), None, "text")
    with pytest.raises(ReferenceNotFound):
        create_insight(_actor(), "ghost", "text")
    with pytest.raises(ReferenceNotFound) as ei:
        create_insight(_actor(), "cx", "text", project_id="p-other")
    assert ei.value.entity == "project"
    assert model.calls == []


def test_explicit_ids_win_over_model_picks(table, model):
    from clientintel.repositories.insights_repo import get_insight
    from clientintel.services.insight_pipeline import create_insight

    _seed(table)
    model.queue(enrichment_json(selectedProjectId="p1", selectedStakeholderId=None))
    res = create_insight(_actor(), "cx", "Platform work", project_id="p2", stakeholder_id="s1")
    stored = get_insight(res.id)
    assert stored["projectId"] == "p2"
    assert stored["stakeholderId"] == "s1"


def test_third_approval_does_not_trigger(table, model, monkeypatch):
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    ids = _create_pending(model, 3)
    calls_before = len(model.calls)

    results = [approve_insight(_actor(), iid) for iid in ids]
    assert [r.new_count for r in results] == [1, 2, 3]
    assert all(r.approved and not r.batch_triggered for r in results)
    assert results[-1].opportunity_id is None
    assert len(model.calls) == calls_before
    assert table.of_type("Opportunity") == []


def test_fifth_approval_synthesizes_opportunity_and_tasks(table, model, monkeypatch):
    from clientintel.repositories.opportunities_repo import get_opportunity
    from clientintel.repositories.tasks_repo import list_tasks_for_opportunity
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    ids = _create_pending(model, 5)
    for iid in ids[:4]:
        approve_insight(_actor(), iid)

    model.queue(synthesis_json())
    res = approve_insight(_actor(), ids[4])

    assert res.approved is True
    assert res.new_count == 5
    assert res.batch_triggered is True
    assert res.opportunity_id
    assert 1 <= len(res.task_ids) <= 5

    opp = get_opportunity(res.opportunity_id)
    assert opp["clientId"] == "cx"
    assert opp["stage"] == "identified"
    # Linked to the newest insight of the batch.
    assert opp["insightId"] == ids[4]
    tasks = list_tasks_for_opportunity(res.opportunity_id)
    assert sorted(t["taskId"] for t in tasks) == sorted(res.task_ids)
    assert all(t["status"] == "open" for t in tasks)
    # Ordered by due date.
    dues = [t["dueDate"] for t in tasks]
    assert dues == sorted(dues)

    prompt = model.prompt()
    for i in range(1, 6):
        assert f"Field note number {i}" in prompt


def test_synthesis_failure_is_swallowed_after_commit(table, model):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services.insight_pipeline import create_insight

    _seed(table)
    for i in range(4):
        model.queue(enrichment_json())
        create_insight(_actor(), "cx", f"note {i}")

    model.queue(enrichment_json(), "not json at all")
    res = create_insight(_actor(), "cx", "the fifth note")

    assert res.status == "approved"
    assert res.batch.batch_triggered is True
    assert res.batch.opportunity_id is None
    assert res.batch.new_count == 5
    assert get_approved_count("cx") == 5
    assert table.of_type("Opportunity") == []
    assert len(table.of_type("Insight")) == 5


def test_approving_twice_does_not_move_counter(table, model, monkeypatch):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    (iid,) = _create_pending(model, 1)

    assert approve_insight(_actor(), iid).approved is True
    again = approve_insight(_actor(), iid)
    assert again.approved is False
    assert again.new_count is None
    assert get_approved_count("cx") == 1


def test_rejected_insight_cannot_be_approved(table, model, monkeypatch):
    from clientintel.errors import InvalidTransition
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services.insight_pipeline import approve_insight, reject_insight

    _seed(table)
    _pending_mode(monkeypatch)
    (iid,) = _create_pending(model, 1)

    rejected = reject_insight(_actor(), iid)
    assert rejected["status"] == "rejected"
    with pytest.raises(InvalidTransition):
        approve_insight(_actor(), iid)
    with pytest.raises(InvalidTransition):
        reject_insight(_actor(), iid)
    assert get_approved_count("cx") == 0


def test_only_author_or_elevated_role_may_approve(table, model, monkeypatch):
    from clientintel.errors import ApprovalNotPermitted, ReferenceNotFound
    from clientintel.services.insight_pipeline import approve_insight, reject_insight

    _seed(table)
    _pending_mode(monkeypatch)
    first, second = _create_pending(model, 2)

    with pytest.raises(ApprovalNotPermitted):
        approve_insight(_actor("someone-else"), first)
    with pytest.raises(ApprovalNotPermitted):
        reject_insight(_actor("someone-else"), first)
    with pytest.raises(ReferenceNotFound):
        approve_insight(_actor(), "missing")

    assert approve_insight(_actor("boss", role="Leader"), first).approved is True
    assert reject_insight(_actor("admin-1", role="admin"), second)["status"] == "rejected"


def test_concurrent_approvals_of_one_insight_count_once(table, model, monkeypatch):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    (iid,) = _create_pending(model, 1)

    results: list[bool] = []
    lock = threading.Lock()
    start = threading.Barrier(6)

    def _worker():
        start.wait()
        r = approve_insight(_actor(), iid)
        with lock:
            results.append(r.approved)

    threads = [threading.Thread(target=_worker) for _ in range(6)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert sorted(results) == [False] * 5 + [True]
    assert get_approved_count("cx") == 1


def test_concurrent_approvals_get_distinct_sequence_numbers(table, model, monkeypatch):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.repositories.insights_repo import get_insight
    from clientintel.services.insight_pipeline import approve_insight
    from clientintel.settings import settings

    _seed(table)
    _pending_mode(monkeypatch)
    monkeypatch.setattr(settings, "batch_size", 1000)
    ids = _create_pending(model, 10)

    start = threading.Barrier(len(ids))

    def _worker(iid: str):
        start.wait()
        approve_insight(_actor(), iid)

    threads = [threading.Thread(target=_worker, args=(iid,)) for iid in ids]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert get_approved_count("cx") == 10
    assert sorted(get_insight(iid)["approvalSeq"] for iid in ids) == list(range(1, 11))


def _lagging_index(real, *, skip):
    def _fetch(*, client_id, seq_from, seq_to):
        items = real(client_id=client_id, seq_from=seq_from, seq_to=seq_to)
        return [it for it in items if it["approvalSeq"] not in skip(seq_to)]

    return _fetch


def test_index_lag_on_newest_still_links_opportunity_to_it(table, model, monkeypatch):
    from clientintel.repositories.opportunities_repo import get_opportunity
    from clientintel.repositories.tasks_repo import list_tasks_for_opportunity
    from clientintel.services import insight_pipeline
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    ids = _create_pending(model, 4)
    (fifth,) = _create_pending(model, 1, actor=_actor("u-fifth"))
    ids.append(fifth)
    for iid in ids[:4]:
        approve_insight(_actor(), iid)

    # The index has not caught up with the approval that closed the batch.
    monkeypatch.setattr(
        insight_pipeline,
        "list_approved_window",
        _lagging_index(insight_pipeline.list_approved_window, skip=lambda hi: {hi}),
    )
    model.queue(synthesis_json())
    res = approve_insight(_actor("boss", role="leader"), ids[4])

    assert res.batch_triggered is True
    opp = get_opportunity(res.opportunity_id)
    assert opp["insightId"] == ids[4]
    tasks = list_tasks_for_opportunity(res.opportunity_id)
    # No staff on any team: every task falls back to the newest insight's author.
    assert {t["assignedTo"] for t in tasks} == {"u-fifth"}
    prompt = model.prompt()
    for i in range(1, 5):
        assert f"Field note number {i}" in prompt


def test_index_gap_that_never_closes_skips_synthesis(table, model, monkeypatch):
    from clientintel.repositories.clients_repo import get_approved_count
    from clientintel.services import batch_window, insight_pipeline
    from clientintel.services.insight_pipeline import approve_insight

    _seed(table)
    _pending_mode(monkeypatch)
    ids = _create_pending(model, 5)
    for iid in ids[:4]:
        approve_insight(_actor(), iid)

    sleeps: list[int] = []
    monkeypatch.setattr(batch_window, "_sleep_before_reread", lambda delay_s, attempt: sleeps.append(attempt))
    monkeypatch.setattr(
        insight_pipeline,
        "list_approved_window",
        _lagging_index(insight_pipeline.list_approved_window, skip=lambda hi: {hi - 2}),
    )
    calls_before = len(model.calls)
    res = approve_insight(_actor(), ids[4])

    assert res.approved is True
    assert res.new_count == 5
    assert res.batch_triggered is True
    assert res.opportunity_id is None
    assert sleeps == [1, 2]
    assert len(model.calls) == calls_before
    assert table.of_type("Opportunity") == []
    assert get_approved_count("cx") == 5

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure `backend/` is on sys.path so `import clientintel.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from clientintel.ai import client as ai_client  # noqa: E402
from clientintel.repositories import (  # noqa: E402
    campaigns_repo,
    clients_repo,
    insights_repo,
    name_search,
    opportunities_repo,
    projects_repo,
    stakeholders_repo,
    tasks_repo,
    users_repo,
)
from clientintel.settings import settings  # noqa: E402

from fakes import FakeModel, FakeTable  # noqa: E402

_REPO_MODULES = (
    campaigns_repo,
    clients_repo,
    insights_repo,
    name_search,
    opportunities_repo,
    projects_repo,
    stakeholders_repo,
    tasks_repo,
    users_repo,
)


@pytest.fixture
def table(monkeypatch) -> FakeTable:
    t = FakeTable()
    for mod in _REPO_MODULES:
        monkeypatch.setattr(mod, "get_main_table", lambda: t)
    return t


@pytest.fixture
def model(monkeypatch):
    fake = FakeModel()
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(ai_client, "_client", fake.client)
    ai_client._circuit_record_success()
    yield fake
    ai_client._circuit_record_success()

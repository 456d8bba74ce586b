from __future__ import annotations


def _seed(table):
    from clientintel.repositories.clients_repo import create_client
    from clientintel.repositories.projects_repo import create_project
    from clientintel.repositories.stakeholders_repo import create_stakeholder

    acme = create_client(name="Acme Corp", client_id="acme")
    globex = create_client(name="Globex", client_id="globex")
    create_project(client_id="acme", name="Acme Data Platform", project_id="p1")
    create_project(client_id="globex", name="Billing Revamp", project_id="p2")
    create_stakeholder(client_id="acme", name="Dana Acme-Liaison", stakeholder_id="s1")
    return acme, globex


def test_search_matches_names_containing_the_text_prefix(table):
    from clientintel.services.reference_resolver import search_references

    _seed(table)
    refs = search_references("ACME")
    assert [c["clientId"] for c in refs.clients] == ["acme"]
    assert [p["projectId"] for p in refs.projects] == ["p1"]
    assert [s["stakeholderId"] for s in refs.stakeholders] == ["s1"]


def test_search_uses_only_the_leading_slice(table):
    from clientintel.services.reference_resolver import search_references, text_prefix

    _seed(table)
    # The first 6 characters are "globex"; the rest of the text is ignored.
    assert text_prefix("Globex wants a renewal", 6) == "globex"
    refs = search_references("Globex wants a renewal", prefix_chars=6)
    assert [c["clientId"] for c in refs.clients] == ["globex"]
    assert refs.projects == []

    # A prefix longer than any name matches nothing.
    assert search_references("Globex wants a renewal", prefix_chars=20).is_empty()


def test_search_on_empty_text_is_empty(table):
    from clientintel.services.reference_resolver import guess_client, search_references

    _seed(table)
    assert search_references("   ").is_empty()
    assert guess_client(None) is None


def test_guess_client_returns_first_match_or_none(table):
    from clientintel.services.reference_resolver import guess_client

    _seed(table)
    assert guess_client("acme corp")["clientId"] == "acme"
    assert guess_client("Initech needs help with the migration") is None

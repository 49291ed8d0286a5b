"""Integration tests for POST /api/v1/projects/claim and setup-code routes.

Covers:
- an owner generates a setup code; claiming it returns the project's
  API key, slug, name, id and the hub's base URL
- claiming the same code again is 410 "Setup code has already been used"
- missing and malformed codes are 400, unknown codes 404, expired 410
- revoked codes cannot be claimed; used codes cannot be revoked

Fixtures used (from conftest.py):
  hub -- (TestClient, Stores)
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import Stores, bearer, from_ip, make_project, make_user
from core.db import utcnow


def _claim(client: TestClient, code):
    body = {} if code is None else {"setupCode": code}
    return client.post("/api/v1/projects/claim", json=body, headers=from_ip())


@pytest.fixture
def fixed_setup_code(hub):
    """Make the next issued setup code the literal setup_abc123."""
    _, stores = hub
    original = stores.setup_codes._code_factory
    stores.setup_codes._code_factory = lambda: "setup_abc123"
    yield "setup_abc123"
    stores.setup_codes._code_factory = original


class TestScenarioClaim:
    def test_claim_once_then_gone(self, hub: tuple[TestClient, Stores], fixed_setup_code: str) -> None:
        client, stores = hub
        owner = make_user(stores)
        project = make_project(stores, owner, name="My Shop")

        resp = client.post(f"/api/v1/project/{project.id}/setup-code", headers=bearer(owner))
        assert resp.status_code == 201
        assert resp.json()["code"] == fixed_setup_code

        first = _claim(client, fixed_setup_code)
        assert first.status_code == 200
        assert first.json() == {
            "apiKey": project.api_key,
            "slug": project.slug,
            "centerUrl": "http://testserver",
            "projectName": "My Shop",
            "projectId": project.id,
        }

        second = _claim(client, fixed_setup_code)
        assert second.status_code == 410
        assert second.json() == {"error": "Setup code has already been used", "code": "code_already_used"}


class TestClaimErrors:
    def test_missing_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = _claim(client, None)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Setup code is required"

    def test_malformed_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = _claim(client, "abc123")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid setup code format"

    def test_unknown_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = _claim(client, "setup_" + "0" * 32)
        assert resp.status_code == 404

    def test_expired_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        record = stores.setup_codes.issue(ttl_seconds=60, now=utcnow() - timedelta(days=2), project_id=project.id)
        resp = _claim(client, record.code)
        assert resp.status_code == 410
        assert resp.json()["code"] == "code_expired"


class TestSetupCodeRoutes:
    def test_list_and_revoke(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        owner = make_user(stores)
        project = make_project(stores, owner)
        created = client.post(f"/api/v1/project/{project.id}/setup-code", headers=bearer(owner)).json()

        listed = client.get(f"/api/v1/project/{project.id}/setup-code", headers=bearer(owner)).json()
        assert [c["id"] for c in listed["codes"]] == [created["id"]]
        assert set(listed["codes"][0]) == {"id", "code", "expiresAt", "createdAt"}

        resp = client.delete(f"/api/v1/project/{project.id}/setup-code/{created['id']}", headers=bearer(owner))
        assert resp.json() == {"success": True}
        assert _claim(client, created["code"]).status_code == 404

    def test_used_code_cannot_be_revoked(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        owner = make_user(stores)
        project = make_project(stores, owner)
        created = client.post(f"/api/v1/project/{project.id}/setup-code", headers=bearer(owner)).json()
        assert _claim(client, created["code"]).status_code == 200

        resp = client.delete(f"/api/v1/project/{project.id}/setup-code/{created['id']}", headers=bearer(owner))
        assert resp.status_code == 404

    def test_non_owner_cannot_generate(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        intruder = make_user(stores)
        resp = client.post(f"/api/v1/project/{project.id}/setup-code", headers=bearer(intruder))
        assert resp.status_code == 403

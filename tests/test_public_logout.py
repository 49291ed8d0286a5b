"""Integration tests for POST /api/v1/public/logout.

Covers:
- the (user, project) session row is removed and a logout entry written
- unknown users, unknown projects, empty and malformed bodies all answer
  {"success": true} with 200
- 21 calls from one IP inside a minute: the 21st is 429 with Retry-After

Fixtures used (from conftest.py):
  hub -- (TestClient, Stores)
"""

from fastapi.testclient import TestClient

from conftest import Stores, from_ip, make_project, make_user


class TestPublicLogout:
    def test_removes_session(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        stores.projects.upsert_session(project.id, user.id, user.email)

        resp = client.post(
            "/api/v1/public/logout",
            json={"userId": user.id, "projectSlug": project.slug},
            headers=from_ip(),
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert stores.projects.list_sessions(project.id) == []
        entries = stores.audit.list_visible(user.id, [])
        assert entries[0].action == "logout"
        assert entries[0].metadata == {"endpoint": "public", "sessions_removed": 1}

    def test_unknown_project_is_silent(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = client.post(
            "/api/v1/public/logout",
            json={"userId": "ghost", "projectSlug": "nope"},
            headers=from_ip(),
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    def test_empty_body_is_silent(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = client.post("/api/v1/public/logout", headers=from_ip())
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    def test_malformed_body_is_silent(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = client.post(
            "/api/v1/public/logout",
            content=b"{not json",
            headers={"Content-Type": "application/json", **from_ip()},
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    def test_non_object_body_is_silent(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = client.post("/api/v1/public/logout", json=["a", "b"], headers=from_ip())
        assert resp.json() == {"success": True}


class TestScenarioRateLimit:
    def test_twenty_first_call_is_429(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        headers = from_ip("10.250.0.21")
        for _ in range(20):
            assert client.post("/api/v1/public/logout", json={}, headers=headers).status_code == 200

        resp = client.post("/api/v1/public/logout", json={}, headers=headers)

        assert resp.status_code == 429
        retry_after = int(resp.headers["retry-after"])
        assert 1 <= retry_after <= 60
        assert resp.json()["code"] == "rate_limited"
        assert stores.audit.count(action="rate_limited", ip_address="10.250.0.21") == 1

    def test_other_ip_is_unaffected(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        for _ in range(21):
            client.post("/api/v1/public/logout", json={}, headers=from_ip("10.250.0.22"))
        assert client.post("/api/v1/public/logout", json={}, headers=from_ip("10.250.0.23")).status_code == 200

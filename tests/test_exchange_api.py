"""Integration tests for the server-to-server API: /token and /session/verify.

Covers:
- x-api-key: missing is 401, unknown is 403 and audited
- exchange: missing code 400, unknown 404, expired 410, used 410
- a code is bound to the project it was issued for and to its redirect_uri;
  a mismatch is rejected without consuming the code
- a rotated API key stops working immediately
- verify: valid, token_version_mismatch after logout-all, missing userId 400;
  a missing, null or zero tokenVersion is read as 1
- the database limiter answers 429 with Retry-After on the 31st exchange

Fixtures used (from conftest.py):
  hub -- (TestClient, Stores)
"""

from datetime import timedelta

from fastapi.testclient import TestClient

from conftest import Stores, bearer, from_ip, make_project, make_user
from core.db import utcnow
from projects.lifecycle import rotate_project_key

_CB = "https://shop.example.com/cb"


def _code(stores: Stores, user, project, redirect_uri: str = _CB, now=None) -> str:
    record = stores.auth_codes.issue(
        ttl_seconds=300,
        now=now,
        user_id=user.id,
        project_id=project.id,
        redirect_uri=redirect_uri,
    )
    return record.code


def _headers(project, ip: str | None = None) -> dict:
    return {"x-api-key": project.api_key, **from_ip(ip)}


class TestApiKey:
    def test_missing_key(self, hub: tuple[TestClient, Stores]) -> None:
        client, _ = hub
        resp = client.post("/api/v1/token", json={"code": "x"}, headers=from_ip())
        assert resp.status_code == 401
        assert resp.json() == {"error": "Missing API Key", "code": "missing_api_key"}

    def test_unknown_key(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        ip = "10.200.0.1"
        resp = client.post("/api/v1/session/verify", json={"userId": "u"}, headers={"x-api-key": "cl_bogus", **from_ip(ip)})
        assert resp.status_code == 403
        assert resp.json()["error"] == "Invalid API Key"
        assert stores.audit.count(action="access_denied", ip_address=ip) == 1

    def test_rotated_key_is_rejected(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        owner = make_user(stores)
        project = make_project(stores, owner)
        old_key = project.api_key
        new_key = rotate_project_key(stores.projects, stores.audit, project, owner.id)

        body = {"userId": owner.id, "tokenVersion": 1}
        old = client.post("/api/v1/session/verify", json=body, headers={"x-api-key": old_key, **from_ip()})
        new = client.post("/api/v1/session/verify", json=body, headers={"x-api-key": new_key, **from_ip()})
        assert old.status_code == 403
        assert new.status_code == 200


class TestTokenExchange:
    def test_missing_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        resp = client.post("/api/v1/token", json={}, headers=_headers(project))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing code"

    def test_unknown_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        resp = client.post("/api/v1/token", json={"code": "0" * 64}, headers=_headers(project))
        assert resp.status_code == 404
        assert resp.json()["code"] == "invalid_code"

    def test_expired_code(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        code = _code(stores, user, project, now=utcnow() - timedelta(minutes=6))
        resp = client.post("/api/v1/token", json={"code": code}, headers=_headers(project))
        assert resp.status_code == 410
        assert resp.json()["code"] == "code_expired"

    def test_code_for_other_project_is_not_consumed(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        shop = make_project(stores, user, name="shop")
        other = make_project(stores, user, name="other")
        code = _code(stores, user, shop)

        stolen = client.post("/api/v1/token", json={"code": code}, headers=_headers(other))
        assert stolen.status_code == 404
        assert stores.auth_codes.get(code).used_at is None

        legit = client.post("/api/v1/token", json={"code": code}, headers=_headers(shop))
        assert legit.status_code == 200

    def test_redirect_uri_must_match(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        code = _code(stores, user, project)

        wrong = client.post(
            "/api/v1/token",
            json={"code": code, "redirectUri": "https://shop.example.com/other"},
            headers=_headers(project),
        )
        assert wrong.status_code == 400
        assert wrong.json()["code"] == "redirect_mismatch"
        assert stores.auth_codes.get(code).used_at is None

    def test_exchange_failures_are_audited(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        ip = "10.200.0.2"
        client.post("/api/v1/token", json={"code": "f" * 64}, headers=_headers(project, ip))
        assert stores.audit.count(action="token_exchange", status="failure", ip_address=ip) == 1

    def test_rate_limited_after_thirty(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        headers = _headers(project, "10.200.0.3")
        for _ in range(30):
            assert client.post("/api/v1/token", json={"code": "0" * 64}, headers=headers).status_code == 404
        resp = client.post("/api/v1/token", json={"code": "0" * 64}, headers=headers)
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) >= 1
        assert resp.json()["code"] == "rate_limited"


class TestSessionVerify:
    def test_valid(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        resp = client.post(
            "/api/v1/session/verify",
            json={"userId": user.id, "tokenVersion": 1},
            headers=_headers(project),
        )
        assert resp.status_code == 200
        assert resp.json() == {"valid": True}
        assert resp.headers["cache-control"] == "no-store"

    def test_token_version_defaults_to_one(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        resp = client.post("/api/v1/session/verify", json={"userId": user.id}, headers=_headers(project))
        assert resp.json() == {"valid": True}

    def test_null_or_zero_token_version_reads_as_one(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)
        for version in (None, 0):
            resp = client.post(
                "/api/v1/session/verify",
                json={"userId": user.id, "tokenVersion": version},
                headers=_headers(project),
            )
            assert resp.status_code == 200
            assert resp.json() == {"valid": True}

    def test_invalid_after_logout_all(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        user = make_user(stores)
        project = make_project(stores, user)

        resp = client.post("/api/v1/auth/logout-all", headers={**bearer(user), **from_ip()})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "tokenVersion": 2}

        resp = client.post(
            "/api/v1/session/verify",
            json={"userId": user.id, "tokenVersion": 1},
            headers=_headers(project),
        )
        assert resp.json() == {"valid": False, "reason": "token_version_mismatch"}

    def test_unknown_user(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        resp = client.post("/api/v1/session/verify", json={"userId": "ghost"}, headers=_headers(project))
        assert resp.json() == {"valid": False, "reason": "user_not_found"}

    def test_missing_user_id(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        resp = client.post("/api/v1/session/verify", json={"tokenVersion": 1}, headers=_headers(project))
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing userId", "code": "invalid_request"}

    def test_bad_token_version_type(self, hub: tuple[TestClient, Stores]) -> None:
        client, stores = hub
        project = make_project(stores, make_user(stores))
        resp = client.post(
            "/api/v1/session/verify",
            json={"userId": "u", "tokenVersion": "abc"},
            headers=_headers(project),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

"""Unit tests for auth/sessions.py and oauth2/exchange.verify_session().

Covers:
- revoke_all_sessions() bumps token_version by exactly one per call
- every project session row of the user is removed, others are kept
- verify_session() answers valid before and token_version_mismatch after
- an unknown user is user_not_found, and an unknown id for revoke is 404
- concurrent revocations never lose an increment
"""

import threading

import pytest

from auth.sessions import revoke_all_sessions
from conftest import make_project, make_stores, make_user
from core.errors import NotFound
from oauth2.exchange import verify_session
from security.models import AuditAction, RequestInfo

_INFO = RequestInfo(ip_address="10.1.1.1", user_agent="pytest")


class TestRevokeAllSessions:
    def test_increments_version(self, stores) -> None:
        user = make_user(stores)
        assert user.token_version == 1
        assert revoke_all_sessions(stores.users, stores.projects, stores.audit, user.id, info=_INFO) == 2
        assert revoke_all_sessions(stores.users, stores.projects, stores.audit, user.id, info=_INFO) == 3
        assert stores.users.get_token_version(user.id) == 3

    def test_removes_only_that_users_sessions(self, stores) -> None:
        alice = make_user(stores)
        bob = make_user(stores)
        project = make_project(stores, alice)
        stores.projects.upsert_session(project.id, alice.id, alice.email)
        stores.projects.upsert_session(project.id, bob.id, bob.email)

        revoke_all_sessions(stores.users, stores.projects, stores.audit, alice.id, info=_INFO)

        remaining = stores.projects.list_sessions(project.id)
        assert [s.user_id for s in remaining] == [bob.id]

    def test_writes_kill_switch_audit(self, stores) -> None:
        user = make_user(stores)
        revoke_all_sessions(stores.users, stores.projects, stores.audit, user.id, info=_INFO)
        entries = stores.audit.list_visible(user.id, [])
        assert entries[0].action == AuditAction.KILL_SWITCH.value
        assert entries[0].metadata["new_token_version"] == 2

    def test_unknown_user(self, stores) -> None:
        with pytest.raises(NotFound):
            revoke_all_sessions(stores.users, stores.projects, stores.audit, "missing", info=_INFO)


class TestVerifySession:
    def test_valid_then_invalid_after_kill_switch(self, stores) -> None:
        user = make_user(stores)
        project = make_project(stores, user)

        result = verify_session(stores.projects, stores.users, stores.audit, project, user.id, 1, _INFO)
        assert result == {"valid": True}

        revoke_all_sessions(stores.users, stores.projects, stores.audit, user.id, info=_INFO)

        result = verify_session(stores.projects, stores.users, stores.audit, project, user.id, 1, _INFO)
        assert result == {"valid": False, "reason": "token_version_mismatch"}
        result = verify_session(stores.projects, stores.users, stores.audit, project, user.id, 2, _INFO)
        assert result == {"valid": True}

    def test_unknown_user(self, stores) -> None:
        owner = make_user(stores)
        project = make_project(stores, owner)
        result = verify_session(stores.projects, stores.users, stores.audit, project, "ghost", 1, _INFO)
        assert result == {"valid": False, "reason": "user_not_found"}
        assert stores.audit.count(action=AuditAction.SESSION_VERIFY, status="failure") == 1

    def test_valid_refreshes_last_seen(self, stores) -> None:
        user = make_user(stores)
        project = make_project(stores, user)
        stores.projects.upsert_session(project.id, user.id, user.email)
        before = stores.projects.list_sessions(project.id)[0].last_seen_at

        verify_session(stores.projects, stores.users, stores.audit, project, user.id, 1, _INFO)

        after = stores.projects.list_sessions(project.id)[0].last_seen_at
        assert after >= before


class TestConcurrentKillSwitch:
    def test_every_call_counts(self, tmp_path) -> None:
        """Ten simultaneous logout-all calls move token_version by exactly ten."""
        stores = make_stores(f"sqlite:///{tmp_path / 'kill.db'}")
        try:
            user = make_user(stores)
            workers = 10
            barrier = threading.Barrier(workers)
            versions: list[int] = []
            lock = threading.Lock()

            def attempt() -> None:
                barrier.wait()
                new_version = revoke_all_sessions(stores.users, stores.projects, stores.audit, user.id, info=_INFO)
                with lock:
                    versions.append(new_version)

            threads = [threading.Thread(target=attempt) for _ in range(workers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert stores.users.get_token_version(user.id) == 1 + workers
            assert sorted(versions) == list(range(2, 2 + workers))
            assert stores.audit.count(action=AuditAction.KILL_SWITCH) == workers
        finally:
            stores.close()

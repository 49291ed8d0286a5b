"""Unit tests for projects/access.py -- project access and redirect rules.

Covers:
- public projects admit any user
- restricted projects admit the owner and members only
- revoking a membership takes effect on the next check
- redirect URIs: loopback always, otherwise same host under the domain
"""

import pytest

from conftest import make_project, make_user
from projects.access import check_access, is_loopback, is_redirect_allowed, normalize_domain
from projects.models import MemberRole, Project, Visibility


class TestCheckAccess:
    def test_public_admits_anyone(self, stores) -> None:
        owner = make_user(stores)
        stranger = make_user(stores)
        project = make_project(stores, owner)
        decision = check_access(stores.projects, stranger.id, project.id)
        assert decision.allowed is True
        assert decision.role == "public"

    def test_restricted_denies_non_member(self, stores) -> None:
        owner = make_user(stores)
        stranger = make_user(stores)
        project = make_project(stores, owner, visibility=Visibility.RESTRICTED)
        decision = check_access(stores.projects, stranger.id, project.id)
        assert decision.allowed is False
        assert decision.reason == "user_not_member"

    def test_restricted_admits_owner(self, stores) -> None:
        owner = make_user(stores)
        project = make_project(stores, owner, visibility=Visibility.RESTRICTED)
        decision = check_access(stores.projects, owner.id, project.id)
        assert decision.allowed is True
        assert decision.role == "owner"

    def test_restricted_admits_member_with_role(self, stores) -> None:
        owner = make_user(stores)
        member = make_user(stores)
        project = make_project(stores, owner, visibility=Visibility.RESTRICTED)
        stores.projects.add_member(project.id, member.id, MemberRole.ADMIN)
        decision = check_access(stores.projects, member.id, project.id)
        assert decision.allowed is True
        assert decision.role == "admin"

    def test_removed_member_is_denied_immediately(self, stores) -> None:
        owner = make_user(stores)
        member = make_user(stores)
        project = make_project(stores, owner, visibility=Visibility.RESTRICTED)
        membership = stores.projects.add_member(project.id, member.id)
        assert check_access(stores.projects, member.id, project.id).allowed

        stores.projects.remove_member(project.id, membership.id)
        assert check_access(stores.projects, member.id, project.id).allowed is False

    def test_unknown_project(self, stores) -> None:
        user = make_user(stores)
        decision = check_access(stores.projects, user.id, "no-such-project")
        assert decision.allowed is False
        assert decision.reason == "project_not_found"

    def test_duplicate_membership_returns_none(self, stores) -> None:
        owner = make_user(stores)
        member = make_user(stores)
        project = make_project(stores, owner, visibility=Visibility.RESTRICTED)
        assert stores.projects.add_member(project.id, member.id) is not None
        assert stores.projects.add_member(project.id, member.id) is None


def _project(domain):
    return Project(name="Shop", slug="shop", api_key="cl_x", owner_id="u1", domain=domain)


class TestRedirectRules:
    @pytest.mark.parametrize(
        "uri",
        [
            "https://shop.example.com/cb",
            "https://shop.example.com/auth/callback?x=1",
            "http://localhost:3000/cb",
            "http://127.0.0.1:8080/cb",
            "http://app.localhost/cb",
        ],
    )
    def test_allowed(self, uri: str) -> None:
        assert is_redirect_allowed(_project("https://shop.example.com"), uri)

    @pytest.mark.parametrize(
        "uri",
        [
            "https://evil.example.net/cb",
            "https://shop.example.com.evil.io/cb",
            "https://shop.example.com/cb#frag",
            "javascript:alert(1)",
            "ftp://shop.example.com/cb",
            "/relative/path",
        ],
    )
    def test_rejected(self, uri: str) -> None:
        assert not is_redirect_allowed(_project("https://shop.example.com"), uri)

    def test_bare_domain_gets_https(self) -> None:
        assert normalize_domain("shop.example.com/") == "https://shop.example.com"
        assert is_redirect_allowed(_project("shop.example.com"), "https://shop.example.com/cb")

    def test_no_domain_allows_loopback_only(self) -> None:
        project = _project(None)
        assert is_redirect_allowed(project, "http://localhost:5173/cb")
        assert not is_redirect_allowed(project, "https://shop.example.com/cb")

    def test_loopback_detection(self) -> None:
        assert is_loopback("http://[::1]:3000/cb")
        assert not is_loopback("https://localhost.evil.io/cb")

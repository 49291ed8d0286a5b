"""Unit tests for auth/login.py and auth/oauth.py -- hub sign-in policy.

Covers:
- first login registers the user and links the provider identity
- returning users are matched by provider subject, then by email
- the email domain allow-list and the auto-registration switch
- an email bound to a different subject is an identity conflict
- five rejected logins from one IP add a brute_force marker
- get_verified_identity() refuses unverified email
"""

import pytest

from auth.login import complete_login, email_domain_allowed
from auth.models import IdentityProvider, User, VerifiedIdentity
from auth.oauth import get_verified_identity, parse_provider
from core.config import Settings
from core.errors import AccessDenied
from security.models import AuditAction, RequestInfo

_INFO = RequestInfo(ip_address="10.5.5.5", user_agent="pytest")


def _identity(email="ada@example.com", subject="sub-1", name="Ada") -> VerifiedIdentity:
    return VerifiedIdentity(provider=IdentityProvider.GOOGLE, email=email, subject=subject, name=name)


class TestCompleteLogin:
    def test_first_login_registers(self, stores) -> None:
        user = complete_login(stores.users, stores.audit, _identity(), _INFO, Settings())
        assert user.email == "ada@example.com"
        assert user.oauth_provider == "google"
        assert user.oauth_subject == "sub-1"
        assert user.last_login is not None
        assert stores.audit.count(action=AuditAction.LOGIN, status="success") == 1

    def test_returning_user_by_subject(self, stores) -> None:
        first = complete_login(stores.users, stores.audit, _identity(), _INFO, Settings())
        again = complete_login(stores.users, stores.audit, _identity(name="Ada L."), _INFO, Settings())
        assert again.id == first.id
        assert again.name == "Ada L."

    def test_existing_email_gets_linked(self, stores) -> None:
        user_id = stores.users.create_user(User(email="ada@example.com"))
        user = complete_login(stores.users, stores.audit, _identity(), _INFO, Settings())
        assert user.id == user_id
        assert stores.users.get_by_oauth("google", "sub-1").id == user_id

    def test_identity_conflict(self, stores) -> None:
        complete_login(stores.users, stores.audit, _identity(subject="sub-1"), _INFO, Settings())
        with pytest.raises(AccessDenied) as exc_info:
            complete_login(stores.users, stores.audit, _identity(subject="sub-2"), _INFO, Settings())
        assert exc_info.value.reason == "identity_conflict"

    def test_domain_not_allowed(self, stores) -> None:
        settings = Settings(allowed_email_domains="corp.example")
        with pytest.raises(AccessDenied) as exc_info:
            complete_login(stores.users, stores.audit, _identity(), _INFO, settings)
        assert exc_info.value.reason == "domain_not_allowed"
        assert stores.users.get_by_email("ada@example.com") is None

    def test_auto_registration_disabled(self, stores) -> None:
        settings = Settings(auto_registration_enabled=False)
        with pytest.raises(AccessDenied) as exc_info:
            complete_login(stores.users, stores.audit, _identity(), _INFO, settings)
        assert exc_info.value.reason == "not_registered"
        assert stores.audit.count(action=AuditAction.LOGIN, status="failure") == 1

    def test_brute_force_marker(self, stores) -> None:
        settings = Settings(auto_registration_enabled=False)
        for i in range(5):
            with pytest.raises(AccessDenied):
                complete_login(stores.users, stores.audit, _identity(subject=f"s{i}"), _INFO, settings)
        assert stores.audit.count(action=AuditAction.ACCESS_DENIED, metadata_contains="brute_force") == 1


class TestDomainAllowList:
    def test_empty_list_allows_all(self) -> None:
        assert email_domain_allowed("a@anything.io", [])

    def test_case_insensitive(self) -> None:
        assert email_domain_allowed("a@Corp.Example", ["corp.example"])
        assert not email_domain_allowed("a@corp.example.evil", ["corp.example"])


class TestVerifiedIdentity:
    def test_verified_email(self) -> None:
        token = {"userinfo": {"email": "a@b.c", "email_verified": True, "sub": "123", "picture": "p"}}
        identity = get_verified_identity(IdentityProvider.GOOGLE, token)
        assert identity.email == "a@b.c"
        assert identity.subject == "123"
        assert identity.image == "p"

    def test_unverified_email_rejected(self) -> None:
        token = {"userinfo": {"email": "a@b.c", "email_verified": False, "sub": "123"}}
        with pytest.raises(ValueError):
            get_verified_identity(IdentityProvider.GOOGLE, token)

    def test_missing_userinfo_rejected(self) -> None:
        with pytest.raises(ValueError):
            get_verified_identity(IdentityProvider.GOOGLE, {})

    def test_parse_provider(self) -> None:
        assert parse_provider("google") is IdentityProvider.GOOGLE
        assert parse_provider("myspace") is None

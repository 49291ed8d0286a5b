"""
auth/login.py -- Turn a verified provider identity into a hub user.

complete_login() is the policy point for who may sign in to the hub:

  1. Email domain allow-list (ALLOWED_EMAIL_DOMAINS). Empty list = any domain.
  2. Returning user: matched by (provider, subject), then by email; an
     email match without a linked identity is linked on first login.
  3. Unknown user: created only when AUTO_REGISTRATION_ENABLED is on,
     otherwise rejected with reason "not_registered".

Every outcome writes one "login" audit entry. After a failure the client IP
is checked for brute force (5 failures / 15 minutes); when it trips, an
extra access_denied entry tagged brute_force is written for the
monitoring queries to pick up.
"""

from __future__ import annotations

import logging
from typing import NoReturn

from sqlalchemy.exc import IntegrityError

from auth.models import User, VerifiedIdentity
from auth.store import UserStore
from core.config import Settings, get_settings
from core.errors import AccessDenied
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo
from security.monitoring import check_brute_force

logger = logging.getLogger("logincenter.auth.login")


def email_domain_allowed(email: str, allowed_domains: list[str]) -> bool:
    if not allowed_domains:
        return True
    domain = email.rsplit("@", 1)[-1].strip().lower()
    return domain in allowed_domains


def complete_login(
    user_store: UserStore,
    audit: AuditLogger,
    identity: VerifiedIdentity,
    info: RequestInfo,
    settings: Settings | None = None,
) -> User:
    """Resolve or register the hub user for identity. Raises AccessDenied with a reason."""
    settings = settings or get_settings()
    provider = identity.provider.value

    if not email_domain_allowed(identity.email, settings.email_domains):
        _reject(audit, identity, info, "domain_not_allowed")

    user = user_store.get_by_oauth(provider, identity.subject)
    created = False
    if user is None:
        user = user_store.get_by_email(identity.email)
        if user is not None and user.oauth_subject is None:
            user_store.link_oauth(user.id, provider, identity.subject)
        elif user is not None:
            # Same email already bound to a different provider subject.
            _reject(audit, identity, info, "identity_conflict", user_id=user.id)
        elif not settings.auto_registration_enabled:
            _reject(audit, identity, info, "not_registered")
        else:
            user = _register(user_store, identity)
            created = True

    user_store.record_login(user.id, name=identity.name, image=identity.image)
    audit.log_success(
        AuditAction.LOGIN,
        user_id=user.id,
        info=info,
        metadata={"provider": provider, "email": identity.email, "new_user": created},
    )
    logger.info("Login succeeded for %s via %s (new_user=%s)", identity.email, provider, created)
    return user_store.get_by_id(user.id)


def _register(user_store: UserStore, identity: VerifiedIdentity) -> User:
    try:
        user_store.create_user(
            User(
                email=identity.email,
                name=identity.name,
                image=identity.image,
                oauth_provider=identity.provider.value,
                oauth_subject=identity.subject,
            )
        )
    except IntegrityError:
        # A concurrent first login for the same email won the insert.
        logger.info("Concurrent registration for %s; using existing record", identity.email)
    return user_store.get_by_email(identity.email)


def _reject(
    audit: AuditLogger,
    identity: VerifiedIdentity,
    info: RequestInfo,
    reason: str,
    user_id: str | None = None,
) -> NoReturn:
    audit.log_failure(
        AuditAction.LOGIN,
        user_id=user_id,
        info=info,
        metadata={"provider": identity.provider.value, "email": identity.email, "reason": reason},
    )
    check = check_brute_force(audit, info.ip_address)
    if check.is_brute_force:
        audit.log_failure(
            AuditAction.ACCESS_DENIED,
            info=info,
            metadata={"reason": "brute_force", "attempts": check.attempts, "email": identity.email},
        )
        logger.warning("Brute force suspected from %s (%d failures)", info.ip_address, check.attempts)
    raise AccessDenied("Login rejected.", reason=reason)

"""
projects/access.py -- Who may sign in to which project, and where the code
may be sent.

check_access() answers from current membership state only; it has no side
effects and is called inside the authorization path before any code is
minted, so revoking a membership takes effect on the very next authorize.

Decision table:
  project missing                 -> denied, "project_not_found"
  visibility = public             -> allowed
  restricted, caller is owner     -> allowed (role "owner")
  restricted, membership row      -> allowed (role from membership)
  restricted, no membership       -> denied, "user_not_member"

Redirect URIs:
  Loopback targets (localhost, 127.0.0.1, ::1, *.localhost) are accepted
  for local development. Anything else must start with the project's
  registered domain AND have the same host, so "https://shop.example.com"
  does not admit "https://shop.example.com.evil.io/cb". A project without a
  domain accepts loopback targets only.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from projects.models import Project, Visibility
from projects.store import ProjectStore

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None
    role: str | None = None


def check_access(store: ProjectStore, user_id: str, project_id: str) -> AccessDecision:
    project = store.get_by_id(project_id)
    if project is None:
        return AccessDecision(allowed=False, reason="project_not_found")
    return check_project_access(store, user_id, project)


def check_project_access(store: ProjectStore, user_id: str, project: Project) -> AccessDecision:
    """Same as check_access() for callers that already hold the Project."""
    if project.visibility == Visibility.PUBLIC:
        return AccessDecision(allowed=True, role="public")
    if project.owner_id == user_id:
        return AccessDecision(allowed=True, role="owner")
    membership = store.get_membership(project.id, user_id)
    if membership is None:
        return AccessDecision(allowed=False, reason="user_not_member")
    return AccessDecision(allowed=True, role=membership.role.value)


# ---------------------------------------------------------------------------
# Redirect URI validation
# ---------------------------------------------------------------------------


def is_loopback(redirect_uri: str) -> bool:
    try:
        host = (urlsplit(redirect_uri).hostname or "").lower()
    except ValueError:
        return False
    return host in LOOPBACK_HOSTS or host.endswith(".localhost")


def normalize_domain(domain: str) -> str:
    """Ensure a scheme is present: "shop.example.com" -> "https://shop.example.com"."""
    domain = domain.strip().rstrip("/")
    if "://" not in domain:
        domain = f"https://{domain}"
    return domain


def is_redirect_allowed(project: Project, redirect_uri: str) -> bool:
    try:
        parts = urlsplit(redirect_uri)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.netloc or parts.fragment:
        return False
    if is_loopback(redirect_uri):
        return True
    if not project.domain:
        return False
    registered = normalize_domain(project.domain)
    if not redirect_uri.startswith(registered):
        return False
    return (urlsplit(registered).hostname or "").lower() == (parts.hostname or "").lower()

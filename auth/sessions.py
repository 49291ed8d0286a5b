"""
auth/sessions.py -- Global session kill switch.

There is no revocation list. Every hub session JWT and every client-project
session carries the user's token_version from the moment it was issued;
bumping the stored counter makes all of them stale at once:

  - hub sessions fail the "tv" comparison in auth.dependencies
  - client projects get {valid: false} from POST /api/v1/session/verify

The project-session rows are deleted as well so owners' session lists
reflect the logout immediately. That cleanup is cosmetic; the counter is
what revokes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from auth.store import UserStore
from core.errors import NotFound
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo

if TYPE_CHECKING:
    from projects.store import ProjectStore

logger = logging.getLogger("logincenter.auth.sessions")


def revoke_all_sessions(
    user_store: UserStore,
    project_store: ProjectStore,
    audit: AuditLogger,
    user_id: str,
    info: RequestInfo | None = None,
    reason: str = "user_logout_all",
) -> int:
    """Increment the user's token_version and return the new value.

    Raises NotFound if the user does not exist.
    """
    new_version = user_store.increment_token_version(user_id)
    if new_version is None:
        raise NotFound("User not found")
    removed = project_store.delete_sessions_for_user(user_id)
    audit.log_success(
        AuditAction.KILL_SWITCH,
        user_id=user_id,
        info=info,
        metadata={"reason": reason, "new_token_version": new_version, "sessions_removed": removed},
    )
    logger.info("Kill switch for user %s: token_version=%d, %d project sessions removed", user_id, new_version, removed)
    return new_version

"""
oauth2/models.py -- Single-use credential records.

AuthorizationCode and SetupCode share the used/expired lifecycle; the
lifecycle lives once in oauth2/codes.py and these classes only carry the
payload each kind needs.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class _SingleUseRecord:
    id: str
    code: str
    expires_at: str
    created_at: str
    used_at: str | None
    used_by_ip: str | None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now_iso: str) -> bool:
        return self.expires_at <= now_iso


@dataclass(frozen=True)
class AuthorizationCode(_SingleUseRecord):
    """Proof that user_id completed login for project_id; valid for minutes."""

    user_id: str
    project_id: str
    redirect_uri: str


@dataclass(frozen=True)
class SetupCode(_SingleUseRecord):
    """Bootstrap credential that hands a new deployment its project API key."""

    project_id: str


@dataclass(frozen=True)
class AuthorizationGrant:
    """Result of a successful /authorize: where to send the browser."""

    code: str
    redirect_to: str
    project_id: str
    user_id: str

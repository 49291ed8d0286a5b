"""
projects/models.py -- Domain dataclasses for client projects.

Pattern: Data class (pure data container). ProjectStore maps rows to these;
api/models.py maps these to the JSON contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Visibility(str, Enum):
    PUBLIC = "public"  # any signed-in hub user may log in
    RESTRICTED = "restricted"  # only owner and explicit members


class MemberRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


@dataclass
class Project:
    """A client application registered with the hub.

    slug is the OAuth client_id and never changes. api_key authenticates
    the project's backend on server-to-server calls; rotation replaces it
    in a single UPDATE so there is no moment with two valid keys.
    """

    name: str
    slug: str
    api_key: str
    owner_id: str
    id: str | None = None
    domain: str | None = None
    visibility: Visibility = Visibility.PUBLIC
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    @property
    def api_key_prefix(self) -> str:
        return self.api_key[:11]


@dataclass
class ProjectMember:
    project_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    id: str | None = None
    created_at: str | None = None
    user_email: str | None = None
    user_name: str | None = None


@dataclass
class ProjectSession:
    """A user currently signed in to a client project (one row per pair)."""

    project_id: str
    user_id: str
    user_email: str
    id: str | None = None
    user_name: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    last_seen_at: str | None = None
    created_at: str | None = None

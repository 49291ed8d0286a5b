"""
auth/models.py -- Domain dataclasses for hub identities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work.

Layer rule: no imports from projects/, oauth2/, api/, or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class IdentityProvider(str, Enum):
    """Closed set of supported identity providers.

    Adding a provider means adding a member here and an entry in
    auth.oauth._PROVIDERS; the login flow itself never branches on the name.
    """

    GOOGLE = "google"


@dataclass
class User:
    """A person who can sign in to the hub.

    token_version is the kill-switch counter. Every hub session JWT and
    every client-project session embeds the value seen at issue time; the
    artifact is valid only while it still equals the stored value.
    """

    email: str
    id: str | None = None
    name: str | None = None
    image: str | None = None
    role: str = "user"  # "user" | "admin"
    token_version: int = 1
    oauth_provider: str | None = None
    oauth_subject: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class VerifiedIdentity:
    """What an identity provider vouches for after a successful handshake."""

    provider: IdentityProvider
    email: str
    subject: str
    name: str | None = None
    image: str | None = None

"""
auth/oauth.py -- Authlib OAuth/OIDC provider registry.

Only providers with both client ID and secret configured get registered.
The login template renders one button per entry of get_enabled_providers().

Provider dispatch:
  _PROVIDERS maps each IdentityProvider member to a ProviderSpec holding
  its display label, its authlib registration kwargs, the settings that
  enable it and the function that turns a token response into a
  VerifiedIdentity. The login flow only ever calls get_verified_identity();
  adding a provider is a new enum member plus a new table entry.

Security notes:
  [V1] Email verification is mandatory. A provider response without
       email_verified=true raises ValueError and the callback treats it as a
       failed login. An unverified address could belong to anyone.

  OAuth state (CSRF protection) is handled by authlib through Starlette's
  SessionMiddleware.

Layer rule: no imports from projects/, oauth2/, api/, or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from auth.models import IdentityProvider, VerifiedIdentity
from core.config import Settings, get_settings

logger = logging.getLogger("logincenter.auth.oauth")


@dataclass(frozen=True)
class ProviderSpec:
    label: str
    register_kwargs: dict
    credentials: Callable[[Settings], tuple[str, str]]
    extract: Callable[[IdentityProvider, dict], VerifiedIdentity]


# ---------------------------------------------------------------------------
# Identity extraction [V1]
# ---------------------------------------------------------------------------


def _oidc_identity(provider: IdentityProvider, token: dict) -> VerifiedIdentity:
    """Build a VerifiedIdentity from an OIDC id_token's userinfo claims."""
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider.value} OAuth: no userinfo in token response")
    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider.value} OAuth: email is not verified")
    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider.value} OAuth: missing email or sub claim in userinfo")
    return VerifiedIdentity(
        provider=provider,
        email=email,
        subject=str(subject),
        name=userinfo.get("name"),
        image=userinfo.get("picture"),
    )


# ---------------------------------------------------------------------------
# Provider table
# ---------------------------------------------------------------------------

_PROVIDERS: dict[IdentityProvider, ProviderSpec] = {
    IdentityProvider.GOOGLE: ProviderSpec(
        label="Google",
        register_kwargs={
            "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
            "client_kwargs": {"scope": "openid email profile"},
        },
        credentials=lambda cfg: (cfg.google_client_id, cfg.google_client_secret),
        extract=_oidc_identity,
    ),
}

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

for _provider, _spec in _PROVIDERS.items():
    _client_id, _client_secret = _spec.credentials(_cfg)
    if _client_id and _client_secret:
        oauth.register(
            name=_provider.value,
            client_id=_client_id,
            client_secret=_client_secret,
            **_spec.register_kwargs,
        )
        logger.info("%s OAuth provider registered", _spec.label)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def parse_provider(name: str) -> IdentityProvider | None:
    """Map a URL path segment to an IdentityProvider, or None if unsupported."""
    try:
        return IdentityProvider(name)
    except ValueError:
        return None


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    cfg = get_settings()
    providers: list[dict] = []
    for provider, spec in _PROVIDERS.items():
        client_id, client_secret = spec.credentials(cfg)
        if client_id and client_secret:
            providers.append({"name": provider.value, "label": spec.label})
    return providers


def get_verified_identity(provider: IdentityProvider, token: dict) -> VerifiedIdentity:
    """Turn a provider token response into a VerifiedIdentity. Raises ValueError [V1]."""
    return _PROVIDERS[provider].extract(provider, token)

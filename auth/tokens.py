"""
auth/tokens.py -- Hub session JWTs and random credential generators.

Security design decisions:
  JWT: python-jose with HS256. The hub session token carries user_id, email,
       role, the user's token_version at issue time ("tv") and expiry.
       decode_access_token() returns None on any failure; the dependency
       layer also compares "tv" against the stored version so the kill
       switch ends hub sessions too.

       Project session tokens (typ="project_session") carry user_id,
       project_id and tv for static front ends that have no backend to
       hold an API key. The two token kinds never decode as each other.

  Random credentials: every secret is drawn from the secrets module.
       - authorization codes: token_hex(32) -> 64 hex chars, 256 bits
       - project API keys:    "cl_" + token_hex(32)
       - setup codes:         "setup_" + token_hex(16), 128 bits, 24h lifetime

  SECRET_KEY: sourced from core.config.get_settings(); validated there.

Layer rule: no imports from projects/, oauth2/, api/, or web/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("logincenter.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_SECRET_KEY = _settings.secret_key

SESSION_COOKIE = "access_token"
PROJECT_SESSION_TYPE = "project_session"

API_KEY_PREFIX = "cl_"
SETUP_CODE_PREFIX = "setup_"
SETUP_CODE_MIN_LENGTH = 10

# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, email: str, role: str, token_version: int, expire_seconds: int = 0) -> str:
    """Encode a signed hub session JWT.

    Args:
        user_id:        User id (uuid string).
        email:          Stored as the JWT subject claim.
        role:           "user" or "admin".
        token_version:  The user's current kill-switch counter.
        expire_seconds: Session duration; 0 uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "user_id": user_id,
        "role": role,
        "tv": token_version,
        "exp": expire,
    }
    return jwt.encode(payload, _SECRET_KEY, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _SECRET_KEY, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "tv" not in payload:
        return None
    if payload.get("typ") is not None:
        return None
    return payload


def create_project_session_token(user_id: str, project_id: str, token_version: int, expire_seconds: int = 0) -> str:
    """Encode the sessionToken a static front end keeps after /api/v1/public/token.

    The "typ" claim keeps it from ever passing as a hub session, and
    decode_project_session_token() refuses hub sessions in turn.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.project_session_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "typ": PROJECT_SESSION_TYPE,
        "user_id": user_id,
        "project_id": project_id,
        "tv": token_version,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _SECRET_KEY, algorithm=_ALGORITHM)


def decode_project_session_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, _SECRET_KEY, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != PROJECT_SESSION_TYPE:
        return None
    if not payload.get("user_id") or not payload.get("project_id"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Random credentials
# ---------------------------------------------------------------------------


def generate_authorization_code() -> str:
    """64 hex characters (256 bits) from the OS CSPRNG."""
    return secrets.token_hex(32)


def generate_api_key() -> str:
    """Generate a project API key in the format cl_<64 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def generate_setup_code() -> str:
    return f"{SETUP_CODE_PREFIX}{secrets.token_hex(16)}"


def is_well_formed_setup_code(code: str) -> bool:
    return code.startswith(SETUP_CODE_PREFIX) and len(code) >= SETUP_CODE_MIN_LENGTH


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the hub session JWT as an httpOnly cookie on the response.

    httponly: JS cannot read it. samesite=lax: not sent on cross-site POST.
    secure: HTTPS only when SECURE_COOKIES=true. max_age matches the JWT.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)

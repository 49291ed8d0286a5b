"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the login center happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. admin_api_key -> ADMIN_API_KEY). Values may also come from .env.

  @model_validator(mode="after"): cross-field validation. DEBUG mode
      generates a throwaway SECRET_KEY with a warning; production refuses to
      start without one.

Security notes:
  [S1] SECRET_KEY shorter than 32 chars is rejected. It signs the hub session
       JWT and the authlib state cookie.
  [S2] ADMIN_API_KEY empty means the admin endpoints are closed, not open.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, projects/, oauth2/, or security/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("logincenter.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'logincenter.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field has a default so Settings() works in tests without a .env
    file. Durations are plain integers; rate-limit windows for the client
    facing endpoints live in security.rate_limit as typed configs instead.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    # Public base URL handed to client projects on setup-code claim.
    # Empty string means "derive from the incoming request".
    center_url: str = ""

    # ------------------------------------------------------------------
    # Hub session
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 8 * 3600
    # Lifetime of the sessionToken handed to static front ends by /api/v1/public/token.
    project_session_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Identity provider (empty string means disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Registration policy
    # ------------------------------------------------------------------

    auto_registration_enabled: bool = True
    # Comma-separated list, e.g. "example.com,example.org". Empty = any domain.
    allowed_email_domains: str = ""

    # ------------------------------------------------------------------
    # Codes
    # ------------------------------------------------------------------

    auth_code_ttl_seconds: int = 300
    setup_code_ttl_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # Admin and retention
    # ------------------------------------------------------------------

    admin_api_key: str = ""
    audit_retention_days: int = 90
    retention_interval_hours: int = 6

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # X-Forwarded-For / X-Real-IP are only honoured behind a trusted proxy.
    trust_proxy_headers: bool = False
    allowed_hosts: str = "localhost,127.0.0.1,*.localhost,testserver"
    cors_origins: str = "http://localhost,http://localhost:3000,http://127.0.0.1"
    admin_rate_limit: str = "30/minute"
    integration_check_timeout: float = 10.0
    # Lets the integration check reach loopback and private addresses (local development).
    integration_check_allow_private: bool = False

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def email_domains(self) -> list[str]:
        return [d.strip().lower() for d in self.allowed_email_domains.split(",") if d.strip()]

    @property
    def allowed_host_list(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Hub sessions will not survive a restart.

        Production mode: refuse to start without a key.

        Both modes: reject keys shorter than 32 characters [S1].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Hub sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() after changing environment
    variables if a fresh instance is needed.
    """
    return Settings()

"""
security/rate_limit.py -- Database-backed fixed-window rate limiter.

The counters live in the rate_limits table, not in process memory, so every
worker process behind the load balancer shares one budget per key. This is
the limiter for the client-facing endpoints (code exchange, session verify,
public logout, setup-code claim). slowapi in api/limiter.py still guards the
hub's own admin and session routes with its in-memory store.

Atomicity:
  check() is a single INSERT ... ON CONFLICT(key) DO UPDATE ... RETURNING.
  The SET clause decides in SQL whether the stored window has expired (reset
  to count=1) or is live (count + 1). Two concurrent requests therefore
  serialize on the row and can never both take the last slot.

Window semantics (fixed window):
  first request, or first after expires_at  -> count=1, new window from now
  otherwise                                 -> count += 1
  allowed iff count <= max_requests
  denied results carry retry_after_ms = expires_at - now (always > 0)

Layer rule: imports only core/ and security/.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import case, delete

from core.config import get_settings
from core.db import dispose_engine, get_engine, parse_iso, to_iso, upsert, utcnow
from core.errors import RateLimited
from core.schema import rate_limits
from security.audit import AuditLogger
from security.models import AuditAction, RateLimitConfig, RateLimitResult, RequestInfo

logger = logging.getLogger("logincenter.ratelimit")

# ---------------------------------------------------------------------------
# Named configurations
# ---------------------------------------------------------------------------

RATE_LIMITS: dict[str, RateLimitConfig] = {
    # Hub login attempts: 10 per 15 minutes.
    "auth": RateLimitConfig(window_ms=15 * 60 * 1000, max_requests=10),
    "token_exchange": RateLimitConfig(window_ms=60 * 1000, max_requests=30),
    "session_verify": RateLimitConfig(window_ms=60 * 1000, max_requests=100),
    "public_logout": RateLimitConfig(window_ms=60 * 1000, max_requests=20),
    # SDK flow without an API key: stricter than the server-to-server pair.
    "public_token": RateLimitConfig(window_ms=60 * 1000, max_requests=10),
    "public_session_verify": RateLimitConfig(window_ms=60 * 1000, max_requests=60),
    "setup_claim": RateLimitConfig(window_ms=60 * 1000, max_requests=10),
}


def rate_limit_key(client_ip: str, endpoint: str) -> str:
    """Build the per-IP, per-endpoint counter key, e.g. ip:10.0.0.1:api/v1/token."""
    return f"ip:{client_ip}:{endpoint}"


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Fixed-window counters keyed by arbitrary strings.

    Usage:
        limiter = RateLimiter(db_url)
        result = limiter.check(rate_limit_key(ip, "api/v1/token"), RATE_LIMITS["token_exchange"])
        if not result.allowed:
            raise RateLimited(result.retry_after_ms)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.db_url = db_url or get_settings().database_url
        self.engine = get_engine(self.db_url)

    def check(self, key: str, config: RateLimitConfig, now: datetime | None = None) -> RateLimitResult:
        """Count one request against key and report whether it is admitted.

        now is injectable so tests can step across window boundaries
        without sleeping.
        """
        now = now or utcnow()
        now_s = to_iso(now)
        window_end_s = to_iso(now + timedelta(milliseconds=config.window_ms))
        expired = rate_limits.c.expires_at <= now_s

        stmt = upsert(self.engine, rate_limits).values(
            key=key,
            count=1,
            window_start=now_s,
            expires_at=window_end_s,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[rate_limits.c.key],
            set_={
                "count": case((expired, 1), else_=rate_limits.c["count"] + 1),
                "window_start": case((expired, now_s), else_=rate_limits.c.window_start),
                "expires_at": case((expired, window_end_s), else_=rate_limits.c.expires_at),
            },
        ).returning(rate_limits.c["count"], rate_limits.c.expires_at)

        with self.engine.begin() as conn:
            count, expires_at = conn.execute(stmt).one()

        reset_at = parse_iso(expires_at)
        if count > config.max_requests:
            retry_after_ms = max(1, math.ceil((reset_at - now).total_seconds() * 1000))
            logger.info("Rate limit exceeded for %s (%d/%d)", key, count, config.max_requests)
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at, retry_after_ms=retry_after_ms)
        return RateLimitResult(allowed=True, remaining=config.max_requests - count, reset_at=reset_at)

    def reset(self, key: str) -> None:
        """Forget the counter for key (e.g. after a successful login)."""
        with self.engine.begin() as conn:
            conn.execute(delete(rate_limits).where(rate_limits.c.key == key))

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every counter whose window has ended. Returns rows removed."""
        cutoff = to_iso(now or utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(delete(rate_limits).where(rate_limits.c.expires_at <= cutoff))
        return result.rowcount

    def close(self) -> None:
        dispose_engine(self.db_url)


# ---------------------------------------------------------------------------
# Enforcement helper
# ---------------------------------------------------------------------------


def enforce_rate_limit(
    limiter: RateLimiter,
    audit: AuditLogger,
    info: RequestInfo,
    name: str,
    endpoint: str,
    *,
    now: datetime | None = None,
) -> RateLimitResult:
    """Count one request from info.ip_address against RATE_LIMITS[name].

    Raises RateLimited (429) and writes a rate_limited audit entry when the
    window is full; otherwise returns the admitted result.
    """
    result = limiter.check(rate_limit_key(info.ip_address, endpoint), RATE_LIMITS[name], now=now)
    if not result.allowed:
        audit.log_failure(
            AuditAction.RATE_LIMITED,
            info=info,
            metadata={"endpoint": endpoint, "retryAfterMs": result.retry_after_ms},
        )
        raise RateLimited(result.retry_after_ms or RATE_LIMITS[name].window_ms)
    return result

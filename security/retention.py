"""
security/retention.py -- Storage hygiene for the audit trail and rate limits.

Deleting expired rows is never needed for correctness: codes and rate-limit
windows are checked against the clock at read time. Cleanup only bounds
storage growth, so it is safe to run from the CLI, the admin endpoint and
the background task in api/main.py, in any order and as often as wanted.
A second run right after a first deletes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from core.db import to_iso, utcnow
from security.audit import AuditLogger
from security.models import RetentionResult
from security.rate_limit import RateLimiter

logger = logging.getLogger("logincenter.retention")

DEFAULT_RETENTION_DAYS = 90


def perform_retention_cleanup(
    audit: AuditLogger,
    limiter: RateLimiter,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: datetime | None = None,
) -> RetentionResult:
    """Delete audit entries older than retention_days and all expired rate limits."""
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")
    now = now or utcnow()
    cutoff = to_iso(now - timedelta(days=retention_days))
    audit_deleted = audit.delete_older_than(cutoff)
    limits_deleted = limiter.purge_expired(now=now)
    logger.info(
        "Retention cleanup: %d audit logs (older than %d days), %d rate limits deleted",
        audit_deleted,
        retention_days,
        limits_deleted,
    )
    return RetentionResult(
        audit_logs_deleted=audit_deleted,
        rate_limits_deleted=limits_deleted,
        retention_days=retention_days,
    )


def get_audit_logs_stats(audit: AuditLogger) -> dict:
    """Return {totalCount, oldestLog, newestLog}."""
    return audit.stats()

"""
security/monitoring.py -- Read-only threat detection over the audit trail.

Everything here is an aggregation query through AuditLogger; nothing writes.
The admin endpoint (GET /api/v1/admin/security) and the CLI
security-report command are the consumers.

Thresholds (per rolling hour):
  failed logins          >= 10 warning, >= 25 critical
  distinct failing IPs   >= 5  warning  (possible distributed attack)
  brute-force markers    >= 3  critical
  access denials         >= 20 warning

Brute-force markers are audit entries whose metadata contains "brute_force";
auth/login.py writes one when check_brute_force() trips for an IP.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from core.db import to_iso, utcnow
from security.audit import AuditLogger
from security.models import AuditAction, AuditStatus, SecurityAlert

FAILED_LOGINS_WARNING = 10
FAILED_LOGINS_CRITICAL = 25
UNIQUE_FAILED_IPS_WARNING = 5
BRUTE_FORCE_CRITICAL = 3
ACCESS_DENIED_WARNING = 20

BRUTE_FORCE_THRESHOLD = 5
BRUTE_FORCE_WINDOW = timedelta(minutes=15)


@dataclass(frozen=True)
class BruteForceCheck:
    is_brute_force: bool
    attempts: int
    window_start: str


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def get_security_metrics(audit: AuditLogger, now: datetime | None = None) -> dict:
    """Return 24h counters: logins, failures, success rate, IPs, rate limits, denials."""
    since = to_iso((now or utcnow()) - timedelta(hours=24))
    total = audit.count(action=AuditAction.LOGIN, since=since)
    failed = audit.count(action=AuditAction.LOGIN, status=AuditStatus.FAILURE, since=since)
    success_rate = round((total - failed) / total * 100, 1) if total else 100.0
    return {
        "totalLogins24h": total,
        "failedLogins24h": failed,
        "successRate": success_rate,
        "uniqueIPs24h": audit.count_distinct_ips(status=AuditStatus.FAILURE, since=since),
        "rateLimitHits24h": audit.count(action=AuditAction.RATE_LIMITED, since=since),
        "accessDenied24h": audit.count(action=AuditAction.ACCESS_DENIED, since=since),
        "bruteForceAttempts24h": audit.count(metadata_contains="brute_force", since=since),
    }


# ---------------------------------------------------------------------------
# Threat detection
# ---------------------------------------------------------------------------


def detect_security_threats(audit: AuditLogger, now: datetime | None = None) -> list[SecurityAlert]:
    now = now or utcnow()
    stamp = to_iso(now)
    since = to_iso(now - timedelta(hours=1))
    ts = int(now.timestamp() * 1000)
    alerts: list[SecurityAlert] = []

    failed = audit.count(action=AuditAction.LOGIN, status=AuditStatus.FAILURE, since=since)
    if failed >= FAILED_LOGINS_CRITICAL:
        alerts.append(
            SecurityAlert(
                id=f"failed-logins-critical-{ts}",
                level="critical",
                type="excessive_failed_logins",
                message=f"{failed} failed login attempts in the last hour",
                details={"count": failed, "threshold": FAILED_LOGINS_CRITICAL},
                detected_at=stamp,
            )
        )
    elif failed >= FAILED_LOGINS_WARNING:
        alerts.append(
            SecurityAlert(
                id=f"failed-logins-warning-{ts}",
                level="warning",
                type="elevated_failed_logins",
                message=f"Elevated failed logins: {failed} in the last hour",
                details={"count": failed, "threshold": FAILED_LOGINS_WARNING},
                detected_at=stamp,
            )
        )

    unique_ips = audit.count_distinct_ips(status=AuditStatus.FAILURE, since=since)
    if unique_ips >= UNIQUE_FAILED_IPS_WARNING:
        alerts.append(
            SecurityAlert(
                id=f"distributed-attack-{ts}",
                level="warning",
                type="possible_distributed_attack",
                message=f"Failures from {unique_ips} distinct IP addresses in the last hour",
                details={"uniqueIPs": unique_ips, "threshold": UNIQUE_FAILED_IPS_WARNING},
                detected_at=stamp,
            )
        )

    brute = audit.count(metadata_contains="brute_force", since=since)
    if brute >= BRUTE_FORCE_CRITICAL:
        alerts.append(
            SecurityAlert(
                id=f"brute-force-{ts}",
                level="critical",
                type="brute_force_detected",
                message=f"{brute} brute-force attempts detected in the last hour",
                details={"count": brute, "threshold": BRUTE_FORCE_CRITICAL},
                detected_at=stamp,
            )
        )

    denied = audit.count(action=AuditAction.ACCESS_DENIED, since=since)
    if denied >= ACCESS_DENIED_WARNING:
        alerts.append(
            SecurityAlert(
                id=f"access-denied-{ts}",
                level="warning",
                type="access_denied_spike",
                message=f"{denied} access denials in the last hour",
                details={"count": denied, "threshold": ACCESS_DENIED_WARNING},
                detected_at=stamp,
            )
        )

    return alerts


def generate_security_report(audit: AuditLogger, now: datetime | None = None) -> dict:
    """Combine metrics and alerts into {status, metrics, alerts, recommendations, generatedAt}."""
    now = now or utcnow()
    metrics = get_security_metrics(audit, now=now)
    alerts = detect_security_threats(audit, now=now)

    status = "healthy"
    if any(a.level == "critical" for a in alerts):
        status = "critical"
    elif alerts:
        status = "warning"

    recommendations: list[str] = []
    types = {a.type for a in alerts}
    if types & {"excessive_failed_logins", "elevated_failed_logins"}:
        recommendations.append("Review recent failed logins and confirm ALLOWED_EMAIL_DOMAINS is set.")
    if "possible_distributed_attack" in types:
        recommendations.append("Failures come from many IPs; consider blocking at the proxy or WAF.")
    if "brute_force_detected" in types:
        recommendations.append("Brute force detected; inspect offending IPs in the audit log.")
    if "access_denied_spike" in types:
        recommendations.append("Many access denials; check restricted project memberships.")

    return {
        "status": status,
        "generatedAt": to_iso(now),
        "metrics": metrics,
        "alerts": [alert_to_dict(a) for a in alerts],
        "recommendations": recommendations,
    }


def check_brute_force(
    audit: AuditLogger,
    identifier: str,
    action: AuditAction = AuditAction.LOGIN,
    now: datetime | None = None,
) -> BruteForceCheck:
    """Report whether identifier (IP or email) has 5+ failures of action in 15 minutes."""
    window_start = to_iso((now or utcnow()) - BRUTE_FORCE_WINDOW)
    attempts = audit.count_failures_for(identifier, action=action, since=window_start)
    return BruteForceCheck(
        is_brute_force=attempts >= BRUTE_FORCE_THRESHOLD,
        attempts=attempts,
        window_start=window_start,
    )


def alert_to_dict(alert: SecurityAlert) -> dict:
    data = asdict(alert)
    data["detectedAt"] = data.pop("detected_at")
    return data

"""
api/routes/v1/admin.py -- Operator endpoints behind the x-admin-key header.

Routes:
  GET  /api/v1/admin/retention  -- audit trail stats and the retention period
  POST /api/v1/admin/retention  -- run cleanup; body {"retentionDays": N} optional
  GET  /api/v1/admin/security   -- ?type=metrics | alerts | report (default)

Security:
  [A1] require_admin_key() compares in constant time and audits failures.
       An unset ADMIN_API_KEY closes these routes entirely (401).
  [A2] slowapi throttles both routes (ADMIN_RATE_LIMIT, default 30/minute)
       so a leaked-key scan cannot turn reporting queries into load.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import limiter
from auth.dependencies import request_info, require_admin_key
from core.config import get_settings
from core.errors import InvalidRequest
from security.models import AuditAction
from security.monitoring import alert_to_dict, detect_security_threats, generate_security_report, get_security_metrics
from security.retention import get_audit_logs_stats, perform_retention_cleanup

router = APIRouter(dependencies=[Depends(require_admin_key)])  # [A1]

_ADMIN_LIMIT = get_settings().admin_rate_limit


@router.get("/admin/retention")
@limiter.limit(_ADMIN_LIMIT)  # [A2]
def retention_stats(request: Request) -> dict:
    return {
        "success": True,
        "stats": get_audit_logs_stats(request.app.state.audit),
        "retentionDays": get_settings().audit_retention_days,
    }


@router.post("/admin/retention")
@limiter.limit(_ADMIN_LIMIT)  # [A2]
async def run_retention(request: Request) -> dict:
    """Delete old audit entries and expired rate-limit windows now.

    The body is optional; an empty or non-JSON body uses AUDIT_RETENTION_DAYS.
    """
    retention_days = get_settings().audit_retention_days
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            body = {}
        requested = body.get("retentionDays") if isinstance(body, dict) else None
        if isinstance(requested, int) and not isinstance(requested, bool):
            if requested < 1:
                raise InvalidRequest("retentionDays must be at least 1")
            retention_days = requested

    state = request.app.state
    result = perform_retention_cleanup(state.audit, state.rate_limiter, retention_days)
    state.audit.log_success(
        AuditAction.RETENTION_CLEANUP,
        info=request_info(request),
        metadata={
            "auditLogsDeleted": result.audit_logs_deleted,
            "rateLimitsDeleted": result.rate_limits_deleted,
            "retentionDays": result.retention_days,
            "trigger": "admin_api",
        },
    )
    return {
        "success": True,
        "auditLogsDeleted": result.audit_logs_deleted,
        "rateLimitsDeleted": result.rate_limits_deleted,
        "retentionDays": result.retention_days,
    }


@router.get("/admin/security")
@limiter.limit(_ADMIN_LIMIT)  # [A2]
def security(request: Request, report_type: str = Query(default="report", alias="type")) -> dict:
    audit = request.app.state.audit
    if report_type == "metrics":
        return {"success": True, "metrics": get_security_metrics(audit)}
    if report_type == "alerts":
        alerts = detect_security_threats(audit)
        return {
            "success": True,
            "alerts": [alert_to_dict(a) for a in alerts],
            "hasActiveAlerts": bool(alerts),
            "criticalCount": sum(1 for a in alerts if a.level == "critical"),
            "warningCount": sum(1 for a in alerts if a.level == "warning"),
        }
    return {"success": True, **generate_security_report(audit)}

"""
security/models.py -- Domain types for the audit trail and rate limiter.

Pure data containers. AuditAction is a closed vocabulary: the monitoring
queries in security/monitoring.py count by these values, so an ad-hoc
string would silently fall out of every report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AuditAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    TOKEN_EXCHANGE = "token_exchange"
    SESSION_VERIFY = "session_verify"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    KILL_SWITCH = "kill_switch"
    PROJECT_ACCESS = "project_access"
    VISIBILITY_CHANGE = "visibility_change"
    MEMBER_ADD = "member_add"
    MEMBER_REMOVE = "member_remove"
    PROJECT_CREATE = "project_create"
    PROJECT_DELETE = "project_delete"
    API_KEY_ROTATE = "api_key_rotate"
    SETUP_CODE = "setup_code"
    SETUP_CODE_DELETE = "setup_code_delete"
    SETUP_CODE_USE = "setup_code_use"
    SESSION_DELETE = "session_delete"
    INTEGRATION_TEST = "integration_test"
    RETENTION_CLEANUP = "retention_cleanup"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class AuditLogEntry:
    action: str
    status: str
    id: int | None = None
    user_id: str | None = None
    project_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    metadata: dict = field(default_factory=dict)
    created_at: str | None = None


@dataclass(frozen=True)
class RequestInfo:
    """Caller context attached to audit entries and sessions."""

    ip_address: str = "unknown"
    user_agent: str | None = None


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed window: at most max_requests per key per window_ms."""

    window_ms: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after_ms: int | None = None


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetentionResult:
    audit_logs_deleted: int
    rate_limits_deleted: int
    retention_days: int


@dataclass
class SecurityAlert:
    id: str
    level: str  # "warning" | "critical"
    type: str
    message: str
    details: dict = field(default_factory=dict)
    detected_at: str = ""

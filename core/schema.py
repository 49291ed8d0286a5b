"""
core/schema.py -- SQLAlchemy Core table definitions for the login center.

A single MetaData holds every table so create_all() builds the whole schema
in dependency order. Repositories import the Table objects they own; no
other module writes SQL.

Conventions:
  - Entity ids are uuid4 strings; audit and rate-limit rows use integer ids
    because they are high-volume and never referenced.
  - Timestamps are ISO 8601 UTC strings (see core.db.to_iso).
  - Everything derived from a project cascades on project delete.
  - audit_logs has no foreign keys so the trail outlives what it mentions.
"""

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("name", String(255)),
    Column("image", Text),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("token_version", Integer, nullable=False, server_default="1"),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

projects = Table(
    "projects",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("slug", String(100), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("domain", String(255)),
    Column("api_key", String(80), nullable=False, unique=True),
    Column("owner_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("visibility", String(20), nullable=False, server_default="public"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

project_users = Table(
    "project_users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("role", String(20), nullable=False, server_default="member"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "project_id", name="uq_project_users_user_project"),
)

project_sessions = Table(
    "project_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("user_email", String(320), nullable=False),
    Column("user_name", String(255)),
    Column("user_agent", Text),
    Column("ip_address", String(64)),
    Column("last_seen_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "project_id", name="uq_project_sessions_user_project"),
)

# ---------------------------------------------------------------------------
# Single-use codes
# ---------------------------------------------------------------------------

authorization_codes = Table(
    "authorization_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code", String(128), nullable=False, unique=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("redirect_uri", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("used_by_ip", String(64)),
    Column("created_at", String(32), nullable=False),
)

project_setup_codes = Table(
    "project_setup_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("code", String(128), nullable=False, unique=True),
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("used_by_ip", String(64)),
    Column("created_at", String(32), nullable=False),
)

# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36)),
    Column("project_id", String(36)),
    Column("action", String(40), nullable=False),
    Column("status", String(10), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("metadata", Text),  # JSON
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_logs_created_at", "created_at"),
    Index("ix_audit_logs_action_status", "action", "status"),
    Index("ix_audit_logs_user_id", "user_id"),
    Index("ix_audit_logs_project_id", "project_id"),
)

rate_limits = Table(
    "rate_limits",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(255), nullable=False, unique=True),
    Column("count", Integer, nullable=False),
    Column("window_start", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_rate_limits_expires_at", "expires_at"),
)

#!/usr/bin/env python3
"""
Login Center -- operator command line.

Runs the maintenance and emergency operations that also exist behind the
admin API, directly against DATABASE_URL, without a running server.

Usage:
  python main.py retention
  python main.py retention --days 30
  python main.py security-report
  python main.py audit-stats
  python main.py kill-switch alice@example.com
  python main.py create-project "My Shop" --owner alice@example.com --domain https://shop.example.com
  python main.py create-project "Intranet" --owner alice@example.com --restricted
  python main.py setup-code my-shop-3fa9

Environment variables:
  DATABASE_URL            SQLAlchemy URL. Defaults to ./logincenter.db (SQLite).
  AUDIT_RETENTION_DAYS    Default for `retention` when --days is not given.
"""

import argparse
import json
import logging
import sys

from auth.sessions import revoke_all_sessions
from auth.store import UserStore
from core.config import get_settings
from core.errors import HubError
from oauth2.codes import setup_codes_repo
from projects.lifecycle import issue_setup_code, register_project
from projects.models import Visibility
from projects.store import ProjectStore
from security.audit import AuditLogger
from security.models import AuditAction, RequestInfo
from security.monitoring import generate_security_report
from security.rate_limit import RateLimiter
from security.retention import get_audit_logs_stats, perform_retention_cleanup

logger = logging.getLogger("logincenter.cli")

_CLI_INFO = RequestInfo(ip_address="cli", user_agent="logincenter-cli")


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_retention(args: argparse.Namespace) -> int:
    days = args.days if args.days is not None else get_settings().audit_retention_days
    audit = AuditLogger()
    result = perform_retention_cleanup(audit, RateLimiter(), days)
    audit.log_success(
        AuditAction.RETENTION_CLEANUP,
        info=_CLI_INFO,
        metadata={
            "auditLogsDeleted": result.audit_logs_deleted,
            "rateLimitsDeleted": result.rate_limits_deleted,
            "retentionDays": result.retention_days,
            "trigger": "cli",
        },
    )
    print(f"  Deleted {result.audit_logs_deleted} audit log(s) older than {result.retention_days} days")
    print(f"  Deleted {result.rate_limits_deleted} expired rate-limit window(s)")
    return 0


def cmd_security_report(args: argparse.Namespace) -> int:
    report = generate_security_report(AuditLogger())
    _print_json(report)
    return 2 if report["status"] == "critical" else 0


def cmd_audit_stats(args: argparse.Namespace) -> int:
    _print_json(get_audit_logs_stats(AuditLogger()))
    return 0


def cmd_kill_switch(args: argparse.Namespace) -> int:
    users = UserStore()
    user = users.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    new_version = revoke_all_sessions(
        users,
        ProjectStore(),
        AuditLogger(),
        user.id,
        info=_CLI_INFO,
        reason="operator_cli",
    )
    print(f"  {user.email}: every session revoked (token_version is now {new_version})")
    return 0


def cmd_create_project(args: argparse.Namespace) -> int:
    owner = UserStore().get_by_email(args.owner)
    if owner is None:
        print(f"  [!] No user with email '{args.owner}'. The owner must sign in once first.")
        return 1
    project = register_project(
        ProjectStore(),
        AuditLogger(),
        owner.id,
        args.name,
        domain=args.domain,
        visibility=Visibility.RESTRICTED if args.restricted else Visibility.PUBLIC,
        info=_CLI_INFO,
    )
    print(f"  Project:  {project.name}")
    print(f"  Slug:     {project.slug}  (use as client_id)")
    print(f"  API key:  {project.api_key}")
    print("  The API key is shown only once. Store it now.")
    return 0


def cmd_setup_code(args: argparse.Namespace) -> int:
    project = ProjectStore().get_by_slug(args.slug)
    if project is None:
        print(f"  [!] No project with slug '{args.slug}'.")
        return 1
    record = issue_setup_code(setup_codes_repo(), AuditLogger(), project, project.owner_id, info=_CLI_INFO)
    print(f"  Setup code: {record.code}")
    print(f"  Expires:    {record.expires_at}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Login Center operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("retention", help="Delete old audit logs and expired rate limits")
    p.add_argument("--days", type=int, default=None, help="Retention period in days (default: AUDIT_RETENTION_DAYS)")
    p.set_defaults(func=cmd_retention)

    p = sub.add_parser("security-report", help="Print metrics, alerts and recommendations as JSON")
    p.set_defaults(func=cmd_security_report)

    p = sub.add_parser("audit-stats", help="Print audit log count and date range")
    p.set_defaults(func=cmd_audit_stats)

    p = sub.add_parser("kill-switch", help="Invalidate every session of a user")
    p.add_argument("email")
    p.set_defaults(func=cmd_kill_switch)

    p = sub.add_parser("create-project", help="Register a client project")
    p.add_argument("name")
    p.add_argument("--owner", required=True, help="Email of an existing user")
    p.add_argument("--domain", default=None, help="Allowed redirect origin, e.g. https://shop.example.com")
    p.add_argument("--restricted", action="store_true", help="Members only (default: public)")
    p.set_defaults(func=cmd_create_project)

    p = sub.add_parser("setup-code", help="Generate a one-time setup code for a project")
    p.add_argument("slug")
    p.set_defaults(func=cmd_setup_code)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (HubError, ValueError) as e:
        print(f"  [!] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
projects/integration.py -- "Test integration" check for a client project.

Checks that the registered domain answers over HTTP and summarises recent
session activity, so an owner can tell whether their app is wired up.

The check is a HEAD request with a hard timeout. Any network error is a
soft failure: it becomes {"reachable": false, "error": ...} in the result,
never an exception and never a hang.

Security:
  [P1] The domain is owner-supplied, so the hub only requests hosts whose
       every resolved address is public. Loopback, private, link-local,
       reserved and multicast targets are refused with
       error="private_address" unless INTEGRATION_CHECK_ALLOW_PRIVATE is set.
  [P2] Redirects are not followed. A 3xx from the domain root already
       proves the app answers.
"""

import ipaddress
import logging
import socket
import time
from typing import Optional
from urllib.parse import urlparse

import requests

from core.config import get_settings
from projects.access import normalize_domain
from projects.models import Project
from projects.store import ProjectStore

logger = logging.getLogger("logincenter.integration")

# Module-level session for connection pooling.
_session = requests.Session()


def _is_public_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return not (ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local or ip.is_multicast)


def resolves_to_public(url: str) -> bool:
    """True when the URL's host resolves, and only to public addresses. [P1]"""
    try:
        parsed = urlparse(url)
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError:
        return False
    if not parsed.hostname:
        return False
    try:
        infos = socket.getaddrinfo(parsed.hostname, port, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError):
        return False
    addresses = {info[4][0] for info in infos}
    return bool(addresses) and all(_is_public_address(a) for a in addresses)


def _failure(url: str, start: float, error: str) -> dict:
    return {
        "url": url,
        "reachable": False,
        "statusCode": None,
        "responseTimeMs": round((time.perf_counter() - start) * 1000),
        "error": error,
    }


def check_domain(domain: str, timeout: Optional[float] = None, allow_private: Optional[bool] = None) -> dict:
    """HEAD the domain root. Returns {url, reachable, statusCode, responseTimeMs, error}."""
    settings = get_settings()
    timeout = timeout if timeout is not None else settings.integration_check_timeout
    allow_private = allow_private if allow_private is not None else settings.integration_check_allow_private
    url = normalize_domain(domain)
    start = time.perf_counter()
    if not allow_private and not resolves_to_public(url):
        logger.warning("Integration check refused for %s: not a public address", url)
        return _failure(url, start, "private_address")
    try:
        resp = _session.head(url, timeout=timeout, allow_redirects=False)  # [P2]
    except requests.RequestException as e:
        logger.warning("Integration check failed for %s: %s", url, e)
        return _failure(url, start, type(e).__name__)
    return {
        "url": url,
        "reachable": resp.status_code < 500,
        "statusCode": resp.status_code,
        "responseTimeMs": round((time.perf_counter() - start) * 1000),
        "error": None,
    }


def run_integration_test(store: ProjectStore, project: Project, timeout: Optional[float] = None) -> dict:
    """Check the domain and gather session stats into one verdict."""
    domain_check = check_domain(project.domain, timeout) if project.domain else None
    stats = store.session_stats(project.id)

    issues: list[str] = []
    if domain_check is None:
        issues.append("No domain configured; only localhost redirects are accepted.")
    elif domain_check["error"] == "private_address":
        issues.append("Domain resolves to a private or loopback address and was not contacted.")
    elif not domain_check["reachable"]:
        issues.append("Domain is not reachable.")
    if stats["total"] == 0:
        issues.append("No user has signed in through this project yet.")

    if domain_check is not None and not domain_check["reachable"]:
        status = "failing"
    elif issues:
        status = "partial"
    else:
        status = "ok"

    return {
        "projectId": project.id,
        "slug": project.slug,
        "status": status,
        "domain": domain_check,
        "sessions": stats,
        "issues": issues,
    }

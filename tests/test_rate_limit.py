"""Unit tests for security/rate_limit.py -- database fixed-window limiter.

Covers:
- the first max_requests calls in a window are admitted, the next is denied
- denied results carry retry_after_ms > 0 and reset_at at the window end
- a new window starts once the old one has expired
- keys are independent (per IP, per endpoint)
- enforce_rate_limit() raises RateLimited and writes a rate_limited entry
- purge_expired() deletes only finished windows
- concurrent checks on one key admit exactly max_requests

The clock is injected through check(now=...) so no test sleeps.
"""

import threading
from datetime import timedelta

import pytest

from conftest import make_stores
from core.db import utcnow
from core.errors import RateLimited
from security.models import AuditAction, RateLimitConfig, RequestInfo
from security.rate_limit import RATE_LIMITS, enforce_rate_limit, rate_limit_key

_CONFIG = RateLimitConfig(window_ms=60_000, max_requests=3)


class TestFixedWindow:
    def test_admits_up_to_max(self, stores) -> None:
        now = utcnow()
        results = [stores.limiter.check("k", _CONFIG, now=now) for _ in range(3)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_denies_after_max(self, stores) -> None:
        now = utcnow()
        for _ in range(3):
            stores.limiter.check("k", _CONFIG, now=now)
        denied = stores.limiter.check("k", _CONFIG, now=now + timedelta(seconds=20))
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.retry_after_ms == 40_000
        assert denied.reset_at == now + timedelta(milliseconds=60_000)

    def test_window_resets_after_expiry(self, stores) -> None:
        now = utcnow()
        for _ in range(4):
            stores.limiter.check("k", _CONFIG, now=now)
        later = now + timedelta(seconds=61)
        result = stores.limiter.check("k", _CONFIG, now=later)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_at == later + timedelta(milliseconds=60_000)

    def test_window_end_boundary_starts_new_window(self, stores) -> None:
        now = utcnow()
        for _ in range(3):
            stores.limiter.check("k", _CONFIG, now=now)
        result = stores.limiter.check("k", _CONFIG, now=now + timedelta(milliseconds=60_000))
        assert result.allowed is True

    def test_keys_are_independent(self, stores) -> None:
        now = utcnow()
        for _ in range(3):
            stores.limiter.check(rate_limit_key("10.0.0.1", "api/v1/token"), _CONFIG, now=now)
        other_ip = stores.limiter.check(rate_limit_key("10.0.0.2", "api/v1/token"), _CONFIG, now=now)
        other_endpoint = stores.limiter.check(rate_limit_key("10.0.0.1", "api/v1/session/verify"), _CONFIG, now=now)
        assert other_ip.allowed and other_endpoint.allowed

    def test_reset_forgets_counter(self, stores) -> None:
        now = utcnow()
        for _ in range(4):
            stores.limiter.check("k", _CONFIG, now=now)
        stores.limiter.reset("k")
        assert stores.limiter.check("k", _CONFIG, now=now).allowed


class TestKeyFormat:
    def test_key_includes_ip_and_endpoint(self) -> None:
        assert rate_limit_key("10.0.0.1", "api/v1/token") == "ip:10.0.0.1:api/v1/token"

    def test_named_limits(self) -> None:
        assert RATE_LIMITS["auth"] == RateLimitConfig(window_ms=15 * 60 * 1000, max_requests=10)
        assert RATE_LIMITS["token_exchange"].max_requests == 30
        assert RATE_LIMITS["session_verify"].max_requests == 100
        assert RATE_LIMITS["public_logout"].max_requests == 20


class TestEnforce:
    def test_raises_and_audits_when_exhausted(self, stores) -> None:
        info = RequestInfo(ip_address="10.9.9.9", user_agent="pytest")
        now = utcnow()
        for _ in range(RATE_LIMITS["public_logout"].max_requests):
            enforce_rate_limit(stores.limiter, stores.audit, info, "public_logout", "api/v1/public/logout", now=now)

        with pytest.raises(RateLimited) as exc_info:
            enforce_rate_limit(stores.limiter, stores.audit, info, "public_logout", "api/v1/public/logout", now=now)

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after_seconds == 60
        assert stores.audit.count(action=AuditAction.RATE_LIMITED, ip_address="10.9.9.9") == 1


class TestPurge:
    def test_purge_only_expired(self, stores) -> None:
        now = utcnow()
        stores.limiter.check("old", _CONFIG, now=now - timedelta(minutes=5))
        stores.limiter.check("live", _CONFIG, now=now)
        assert stores.limiter.purge_expired(now=now) == 1
        assert stores.limiter.purge_expired(now=now) == 0


class TestConcurrentCheck:
    def test_admits_exactly_max_requests(self, tmp_path) -> None:
        """Sixteen threads hit one key at once; the upsert counter admits five."""
        stores = make_stores(f"sqlite:///{tmp_path / 'limits.db'}")
        try:
            config = RateLimitConfig(window_ms=60_000, max_requests=5)
            now = utcnow()
            workers = 16
            barrier = threading.Barrier(workers)
            outcomes: list[bool] = []
            lock = threading.Lock()

            def attempt() -> None:
                barrier.wait()
                result = stores.limiter.check("burst", config, now=now)
                with lock:
                    outcomes.append(result.allowed)

            threads = [threading.Thread(target=attempt) for _ in range(workers)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert len(outcomes) == workers
            assert outcomes.count(True) == 5
            assert stores.limiter.check("burst", config, now=now).allowed is False
        finally:
            stores.close()

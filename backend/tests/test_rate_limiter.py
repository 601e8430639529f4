from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from tenantguard.models import RateLimitRecord
from tenantguard.utils.rate_limiter import (
    FALLBACK_CLIENT_IP, RateLimiter, create_rate_limit_error, extract_client_ip,
    ip_identifier, org_identifier,
)

T0 = datetime(2026, 10, 19, 12, 0, 0)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(app, clock):
    return RateLimiter(scope='test', clock=clock)


class TestCheck:
    def test_allows_until_limit_then_denies(self, limiter):
        identifier = ip_identifier('203.0.113.7')
        results = [limiter.check(identifier, 2, 3600) for _ in range(3)]

        assert [r.allowed for r in results] == [True, True, False]
        assert [r.remaining_attempts for r in results] == [1, 0, 0]

    def test_reset_at_is_window_start_plus_window(self, limiter, clock):
        identifier = org_identifier(42)
        limiter.check(identifier, 5, 600)
        clock.advance(120)
        result = limiter.check(identifier, 5, 600)

        assert result.reset_at == T0 + timedelta(seconds=600)

    def test_single_record_per_key(self, limiter):
        identifier = org_identifier(42)
        for _ in range(4):
            limiter.check(identifier, 10, 3600)

        records = RateLimitRecord.query.filter_by(identifier_value='42', scope='test').all()
        assert len(records) == 1
        assert records[0].attempt_count == 4

    def test_expired_window_restarts_counter(self, limiter, clock):
        identifier = ip_identifier('198.51.100.1')
        limiter.check(identifier, 1, 60)
        assert not limiter.check(identifier, 1, 60).allowed

        clock.advance(61)
        result = limiter.check(identifier, 1, 60)

        assert result.allowed
        assert result.remaining_attempts == 0
        assert result.reset_at == clock.now + timedelta(seconds=60)

    def test_scopes_are_independent(self, app, clock):
        identifier = org_identifier(7)
        overrides = RateLimiter(scope='manual_override', clock=clock)
        spikes = RateLimiter(scope='manual_spike_detection_check', clock=clock)

        overrides.check(identifier, 1, 3600)
        assert not overrides.check(identifier, 1, 3600).allowed
        assert spikes.check(identifier, 1, 3600).allowed

    def test_fails_open_when_store_errors(self, limiter):
        error = OperationalError('INSERT', {}, Exception('statement timeout'))
        with patch.object(limiter, '_upsert', side_effect=error):
            result = limiter.check(org_identifier(1), 5, 3600)

        assert result.allowed
        assert result.remaining_attempts == 5


class TestRecordAttempt:
    def test_returns_running_count(self, limiter):
        identifier = ip_identifier('192.0.2.10')
        assert limiter.record_attempt(identifier) == 1
        assert limiter.record_attempt(identifier) == 2

    def test_returns_zero_on_store_error(self, limiter):
        error = OperationalError('INSERT', {}, Exception('connection refused'))
        with patch.object(limiter, '_upsert', side_effect=error):
            assert limiter.record_attempt(ip_identifier('192.0.2.10')) == 0


class TestRetryAfter:
    def test_counts_down_from_window(self, limiter, clock):
        identifier = org_identifier(9)
        limiter.check(identifier, 3, 3600)
        clock.advance(600)

        assert limiter.get_retry_after_seconds(identifier, 3600) == 3000.0

    def test_zero_without_record(self, limiter):
        assert limiter.get_retry_after_seconds(org_identifier(404), 3600) == 0

    def test_zero_after_window_elapsed(self, limiter, clock):
        identifier = org_identifier(9)
        limiter.check(identifier, 3, 60)
        clock.advance(3600)

        assert limiter.get_retry_after_seconds(identifier, 60) == 0


class TestCleanup:
    def test_cleanup_removes_only_expired(self, limiter, clock):
        limiter.check(org_identifier(1), 5, 60)
        limiter.check(org_identifier(2), 5, 3600)

        removed = RateLimitRecord.cleanup_expired(now=clock.now + timedelta(seconds=120))

        assert removed == 1
        assert RateLimitRecord.query.count() == 1


class TestExtractClientIp:
    def test_prefers_first_forwarded_hop(self):
        headers = {'X-Forwarded-For': '203.0.113.5, 10.0.0.1', 'X-Real-IP': '10.0.0.2'}
        assert extract_client_ip(headers) == '203.0.113.5'

    def test_falls_back_to_cloudflare_then_real_ip(self):
        assert extract_client_ip({'CF-Connecting-IP': '198.51.100.4',
                                  'X-Real-IP': '10.0.0.2'}) == '198.51.100.4'
        assert extract_client_ip({'X-Real-IP': '10.0.0.2'}) == '10.0.0.2'

    def test_sentinel_without_headers(self):
        assert extract_client_ip({}) == FALLBACK_CLIENT_IP


def test_rate_limit_error_carries_retry_hint():
    error = create_rate_limit_error(org_identifier(3), 30, 3600,
                                    reset_at=T0 + timedelta(seconds=90), clock=lambda: T0)

    assert error.status_code == 429
    assert error.retry_after_seconds == 90
    assert error.to_dict()['reset_at'] == (T0 + timedelta(seconds=90)).isoformat()

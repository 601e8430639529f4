"""
Persistent DB-backed fixed-window rate limiter.

Correctness under concurrent callers rests entirely on a single atomic
upsert against the ``rate_limits`` table; there is no in-process locking.
When the store cannot be reached the limiter fails open.
"""
import logging
from collections import namedtuple
from datetime import datetime, timedelta
from functools import wraps
from flask import request, g
from sqlalchemy import case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.errors import RateLimitExceeded
from tenantguard.models.rate_limit_record import RateLimitRecord

logger = logging.getLogger(__name__)

FALLBACK_CLIENT_IP = '0.0.0.0'

RateLimitIdentifier = namedtuple('RateLimitIdentifier', ['type', 'value'])
RateLimitResult = namedtuple('RateLimitResult', ['allowed', 'remaining_attempts', 'reset_at'])

_INSERTS = {
    'postgresql': postgresql.insert,
    'sqlite': sqlite.insert,
}


def ip_identifier(value):
    return RateLimitIdentifier('ip', str(value))


def org_identifier(value):
    return RateLimitIdentifier('org', str(value))


def extract_client_ip(headers):
    """Resolve the client address from proxy headers.

    X-Forwarded-For (first hop), then Cloudflare's CF-Connecting-IP, then
    nginx's X-Real-IP, then a fallback sentinel.
    """
    forwarded_for = headers.get('X-Forwarded-For')
    if forwarded_for:
        first_hop = forwarded_for.split(',')[0].strip()
        if first_hop:
            return first_hop

    cf_ip = headers.get('CF-Connecting-IP')
    if cf_ip:
        return cf_ip.strip()

    real_ip = headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()

    return FALLBACK_CLIENT_IP


class RateLimiter:
    """Fixed-window counter keyed by identifier and scope."""

    def __init__(self, scope='default', clock=datetime.utcnow):
        self.scope = scope
        self.clock = clock

    def _insert(self):
        dialect = db.engine.dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise SQLAlchemyError(f'No atomic upsert available for dialect {dialect}')

    def _upsert(self, identifier, window, now):
        """Insert a fresh counter or increment the live one, atomically.

        A counter whose window has elapsed is restarted in the same
        statement, so the stored row is always the live window.
        """
        table = RateLimitRecord.__table__
        expires_at = now + window
        stmt = self._insert()(table).values(
            identifier_type=identifier.type,
            identifier_value=identifier.value,
            scope=self.scope,
            attempt_count=1,
            window_start=now,
            expires_at=expires_at,
            updated_at=now,
        )
        expired = table.c.expires_at <= now
        stmt = stmt.on_conflict_do_update(
            index_elements=['identifier_type', 'identifier_value', 'scope'],
            set_={
                'attempt_count': case((expired, 1), else_=table.c.attempt_count + 1),
                'window_start': case((expired, now), else_=table.c.window_start),
                'expires_at': case((expired, expires_at), else_=table.c.expires_at),
                'updated_at': now,
            },
        ).returning(table.c.attempt_count, table.c.window_start, table.c.expires_at)
        row = db.session.execute(stmt).one()
        db.session.commit()
        return row

    def _purge_expired(self, now):
        """Housekeeping only; a failure here does not affect the decision."""
        try:
            RateLimitRecord.query.filter(
                RateLimitRecord.expires_at <= now
            ).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning('Rate limit purge failed: %s', e)

    def check(self, identifier, limit, window_seconds):
        """
        Count one attempt for ``identifier`` and decide whether it is allowed.

        Returns:
            RateLimitResult(allowed, remaining_attempts, reset_at). Fails open
            with ``remaining_attempts=limit`` if the store errors.
        """
        now = self.clock()
        window = timedelta(seconds=window_seconds)
        self._purge_expired(now)
        try:
            row = self._upsert(identifier, window, now)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Rate limit check failed for %s:%s (%s), failing open: %s',
                         identifier.type, identifier.value, self.scope, e)
            return RateLimitResult(True, limit, now + window)

        return RateLimitResult(
            row.attempt_count <= limit,
            max(0, limit - row.attempt_count),
            row.window_start + window,
        )

    def record_attempt(self, identifier, window_seconds=3600):
        """Increment the counter without a decision. Returns 0 on store error."""
        now = self.clock()
        try:
            row = self._upsert(identifier, timedelta(seconds=window_seconds), now)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Failed to record rate limit attempt for %s:%s: %s',
                         identifier.type, identifier.value, e)
            return 0
        return row.attempt_count

    def get_retry_after_seconds(self, identifier, window_seconds):
        """Seconds until the live window for ``identifier`` resets; 0 if none."""
        now = self.clock()
        try:
            record = RateLimitRecord.query.filter_by(
                identifier_type=identifier.type,
                identifier_value=identifier.value,
                scope=self.scope,
            ).first()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Failed to read retry-after for %s:%s: %s',
                         identifier.type, identifier.value, e)
            return 0

        if record is None:
            return 0
        elapsed = (now - record.window_start).total_seconds()
        return max(0.0, window_seconds - elapsed)


def create_rate_limit_error(identifier, limit, window_seconds, reset_at=None, clock=datetime.utcnow):
    """Build the exception raised to callers that hit a limit."""
    now = clock()
    reset_at = reset_at or now + timedelta(seconds=window_seconds)
    retry_after = max(0, int((reset_at - now).total_seconds() + 0.999))
    return RateLimitExceeded(
        f'Too many requests for {identifier.type} {identifier.value}. '
        f'Limit is {limit} per {window_seconds} seconds.',
        limit=limit,
        reset_at=reset_at,
        retry_after_seconds=retry_after,
    )


# Operator surfaces are bounded to contain a compromised credential
override_limiter = RateLimiter(scope='manual_override')
spike_check_limiter = RateLimiter(scope='manual_spike_detection_check')
suspension_check_limiter = RateLimiter(scope='manual_suspension_check')
admin_action_limiter = RateLimiter(scope='admin_action')
dashboard_limiter = RateLimiter(scope='abuse_dashboard')

OVERRIDE_LIMIT = (30, 3600)
SPIKE_CHECK_LIMIT = (10, 3600)
SUSPENSION_CHECK_LIMIT = (10, 3600)
ADMIN_ACTION_LIMIT = (30, 3600)
DASHBOARD_LIMIT = (10, 3600)


def rate_limited(limiter, limit, window_seconds):
    """Decorator factory limiting an authenticated operator endpoint per actor.

    Must be applied inside ``token_required`` so ``g.actor`` is set.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            from tenantguard.utils import audit_logger
            actor = getattr(g, 'actor', None)
            identifier = (org_identifier(actor.id) if actor is not None
                          else ip_identifier(extract_client_ip(request.headers)))
            result = limiter.check(identifier, limit, window_seconds)
            if not result.allowed:
                audit_logger.log_rate_limit_exceeded(
                    f'{identifier.type}:{identifier.value}', limiter.scope, limit,
                    ip_address=extract_client_ip(request.headers),
                    developer_id=actor.id if actor is not None else None,
                )
                raise create_rate_limit_error(identifier, limit, window_seconds,
                                              reset_at=result.reset_at, clock=limiter.clock)
            return f(*args, **kwargs)
        return wrapper
    return decorator

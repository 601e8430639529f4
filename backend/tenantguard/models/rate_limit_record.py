"""
Fixed-window rate limit counters.
"""
from datetime import datetime, timedelta
from tenantguard import db

IDENTIFIER_TYPES = ['ip', 'org']


class RateLimitRecord(db.Model):
    """One live counter per (identifier_type, identifier_value, scope)."""
    __tablename__ = 'rate_limits'

    id = db.Column(db.Integer, primary_key=True)
    identifier_type = db.Column(db.String(10), nullable=False)
    identifier_value = db.Column(db.String(255), nullable=False)
    # Operation the counter guards, so one identifier can carry several limits
    scope = db.Column(db.String(100), nullable=False, default='default')
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    window_start = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('identifier_type', 'identifier_value', 'scope',
                            name='uq_rate_limits_identifier_scope'),
    )

    @staticmethod
    def cleanup_expired(now=None, grace_seconds=0):
        """Delete counters whose window has fully elapsed."""
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=grace_seconds)
        count = RateLimitRecord.query.filter(
            RateLimitRecord.expires_at <= cutoff
        ).delete(synchronize_session=False)
        db.session.commit()
        return count

    def __repr__(self):
        return f'<RateLimitRecord {self.identifier_type}:{self.identifier_value}/{self.scope}>'

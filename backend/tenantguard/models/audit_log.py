"""
Append-only audit trail of security-relevant events.
"""
import enum
from datetime import datetime
from tenantguard import db


class LogType(str, enum.Enum):
    SUSPENSION = 'suspension'
    UNSUSPENSION = 'unsuspension'
    AUTH_FAILURE = 'auth_failure'
    RATE_LIMIT_EXCEEDED = 'rate_limit_exceeded'
    VALIDATION_FAILURE = 'validation_failure'
    BACKGROUND_JOB = 'background_job'
    MANUAL_INTERVENTION = 'manual_intervention'
    SPIKE_WARNING = 'spike_warning'
    FEATURE_FLAG_ENABLED = 'feature_flag.enabled'
    FEATURE_FLAG_DISABLED = 'feature_flag.disabled'


class Severity(str, enum.Enum):
    INFO = 'info'
    WARNING = 'warning'
    ERROR = 'error'
    CRITICAL = 'critical'


class AuditLogEntry(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    log_type = db.Column(db.String(40), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False, default=Severity.INFO.value)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    developer_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(255), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)
    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    occurred_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'log_type': self.log_type,
            'severity': self.severity,
            'project_id': self.project_id,
            'developer_id': self.developer_id,
            'action': self.action,
            'details': self.details or {},
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'occurred_at': self.occurred_at.isoformat() if self.occurred_at else None,
        }

    def __repr__(self):
        return f'<AuditLogEntry {self.id} {self.log_type}:{self.action}>'

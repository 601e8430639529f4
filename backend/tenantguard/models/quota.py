"""
Per-project caps.
"""
import enum
from datetime import datetime
from tenantguard import db


class CapType(str, enum.Enum):
    DB_QUERIES_PER_DAY = 'db_queries_per_day'
    REALTIME_CONNECTIONS = 'realtime_connections'
    STORAGE_UPLOADS_PER_DAY = 'storage_uploads_per_day'
    FUNCTION_INVOCATIONS_PER_DAY = 'function_invocations_per_day'


CAP_TYPES = [c.value for c in CapType]

# Applied when a project has no explicit row for a cap type
DEFAULT_CAPS = {
    CapType.DB_QUERIES_PER_DAY.value: 10_000,
    CapType.REALTIME_CONNECTIONS.value: 100,
    CapType.STORAGE_UPLOADS_PER_DAY.value: 1_000,
    CapType.FUNCTION_INVOCATIONS_PER_DAY.value: 5_000,
}

MIN_CAP_VALUE = 0
MAX_CAP_VALUE = 1_000_000


class ProjectCap(db.Model):
    __tablename__ = 'project_caps'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False, index=True)
    cap_type = db.Column(db.String(50), nullable=False)
    limit_value = db.Column(db.Integer, nullable=False)
    hard_cap = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('project_id', 'cap_type', name='uq_project_caps_project_cap'),
    )

    def to_dict(self):
        return {
            'project_id': self.project_id,
            'cap_type': self.cap_type,
            'limit_value': self.limit_value,
            'hard_cap': self.hard_cap,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<ProjectCap {self.project_id}:{self.cap_type}={self.limit_value}>'

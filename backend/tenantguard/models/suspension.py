"""
Suspension records. A project has at most one unresolved suspension; the
partial unique index enforces it at the store so concurrent detector runs
cannot double-suspend.
"""
from datetime import datetime
from tenantguard import db


class Suspension(db.Model):
    __tablename__ = 'suspensions'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False, index=True)
    # {cap_type, current_value, limit_exceeded, details}
    reason = db.Column(db.JSON, nullable=False)
    cap_exceeded = db.Column(db.String(50), nullable=False)
    suspension_type = db.Column(db.String(20), nullable=False, default='automatic')
    suspended_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    project = db.relationship('Project', backref=db.backref('suspensions', lazy='dynamic'))

    __table_args__ = (
        db.Index(
            'uq_suspensions_project_unresolved', 'project_id',
            unique=True,
            postgresql_where=db.text('resolved_at IS NULL'),
            sqlite_where=db.text('resolved_at IS NULL'),
        ),
    )

    @property
    def is_resolved(self):
        return self.resolved_at is not None

    def to_dict(self):
        return {
            'id': self.id,
            'project_id': self.project_id,
            'reason': self.reason,
            'cap_exceeded': self.cap_exceeded,
            'suspension_type': self.suspension_type,
            'suspended_at': self.suspended_at.isoformat() if self.suspended_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'notes': self.notes,
        }

    def __repr__(self):
        state = 'resolved' if self.is_resolved else 'open'
        return f'<Suspension {self.id} project={self.project_id} {state}>'

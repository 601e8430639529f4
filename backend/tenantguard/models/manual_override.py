"""
Operator overrides. Written once, in the same transaction as the state
change it describes, and never updated.
"""
import enum
from datetime import datetime
from tenantguard import db


class OverrideAction(str, enum.Enum):
    UNSUSPEND = 'unsuspend'
    INCREASE_CAPS = 'increase_caps'
    BOTH = 'both'

    @property
    def unsuspends(self):
        return self in (OverrideAction.UNSUSPEND, OverrideAction.BOTH)

    @property
    def changes_caps(self):
        return self in (OverrideAction.INCREASE_CAPS, OverrideAction.BOTH)


class ManualOverride(db.Model):
    __tablename__ = 'manual_overrides'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False, index=True)
    action = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    previous_status = db.Column(db.String(20), nullable=False)
    new_status = db.Column(db.String(20), nullable=False)
    previous_caps = db.Column(db.JSON, nullable=False)
    new_caps = db.Column(db.JSON, nullable=False)
    performed_by = db.Column(db.Integer, db.ForeignKey('developers.id'), nullable=False)
    ip_address = db.Column(db.String(64), nullable=True)
    performed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    project = db.relationship('Project')
    performer = db.relationship('Developer')

    def to_dict(self):
        return {
            'id': self.id,
            'project_id': self.project_id,
            'project_name': self.project.name if self.project else None,
            'action': self.action,
            'reason': self.reason,
            'notes': self.notes,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'previous_caps': self.previous_caps,
            'new_caps': self.new_caps,
            'performed_by': self.performed_by,
            'ip_address': self.ip_address,
            'performed_at': self.performed_at.isoformat() if self.performed_at else None,
        }

    def __repr__(self):
        return f'<ManualOverride {self.id} {self.action} project={self.project_id}>'

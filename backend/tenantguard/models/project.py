"""
Project row as seen by abuse control.

Projects are provisioned elsewhere; this service only reads them and flips
their availability flags on suspension and restoration.
"""
from datetime import datetime
from tenantguard import db

PROJECT_STATUS_CHOICES = [
    'active',      # Serving traffic
    'suspended',   # Hard cap breached, unresolved suspension exists
    'archived',    # Terminal, external lifecycle
    'deleted',     # Terminal, external lifecycle
]

# Ordered from most to least permissive
DATA_ACCESS_LEVELS = ['full', 'read_only', 'disabled']


class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('developers.id'), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default='active', index=True)
    data_access = db.Column(db.String(20), nullable=False, default='full')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_write_restricted(self):
        """True when ``data_access`` is read_only or stricter."""
        return DATA_ACCESS_LEVELS.index(self.data_access or 'full') >= DATA_ACCESS_LEVELS.index('read_only')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'owner_id': self.owner_id,
            'status': self.status,
            'data_access': self.data_access,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Project {self.id} status={self.status}>'

"""
Developer accounts and the platform role hierarchy.
"""
import enum
from datetime import datetime
from tenantguard import db


class Role(enum.IntEnum):
    """Platform roles, totally ordered: developer < operator < admin."""
    DEVELOPER = 1
    OPERATOR = 2
    ADMIN = 3

    @property
    def label(self):
        return self.name.lower()

    @classmethod
    def parse(cls, value):
        """Map a stored role name onto the enumeration; unknown names are developers."""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value or '').strip().upper()]
        except KeyError:
            return cls.DEVELOPER


class Developer(db.Model):
    __tablename__ = 'developers'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=Role.DEVELOPER.label)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship('Project', backref='owner', lazy='dynamic')

    @property
    def role_level(self):
        return Role.parse(self.role)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role_level.label,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Developer {self.id} role={self.role}>'

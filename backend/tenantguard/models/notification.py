"""
Notification preferences and the record of every notification sent.
"""
from datetime import datetime
from tenantguard import db

NOTIFICATION_TYPES = [
    'suspension',
    'unsuspension',
    'spike_warning',
    'quota_warning',
]

NOTIFICATION_CHANNELS = ['email', 'in_app']

DEFAULT_CHANNELS = ['email', 'in_app']


class NotificationPreference(db.Model):
    __tablename__ = 'notification_preferences'

    id = db.Column(db.Integer, primary_key=True)
    developer_id = db.Column(db.Integer, db.ForeignKey('developers.id'), nullable=False, index=True)
    # NULL means the preference applies to every project the developer owns
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=True)
    notification_type = db.Column(db.String(40), nullable=False)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    channels = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('developer_id', 'project_id', 'notification_type',
                            name='uq_notification_preferences_scope'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'developer_id': self.developer_id,
            'project_id': self.project_id,
            'notification_type': self.notification_type,
            'enabled': self.enabled,
            'channels': self.channels or [],
        }


class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    developer_id = db.Column(db.Integer, db.ForeignKey('developers.id'), nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=True, index=True)
    notification_type = db.Column(db.String(40), nullable=False)
    subject = db.Column(db.String(500), nullable=False)
    body = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=False, default=dict)
    channels = db.Column(db.JSON, nullable=False, default=list)
    # Reruns of the same event produce the same key and are not resent
    dedupe_key = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    delivered_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('developer_id', 'dedupe_key', name='uq_notifications_dedupe'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'developer_id': self.developer_id,
            'project_id': self.project_id,
            'notification_type': self.notification_type,
            'subject': self.subject,
            'channels': self.channels or [],
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

"""
Append-only usage facts recorded by request-serving paths.
"""
from datetime import datetime
from tenantguard import db


class UsageSample(db.Model):
    __tablename__ = 'usage_samples'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False)
    cap_type = db.Column(db.String(50), nullable=False)
    amount = db.Column(db.Integer, nullable=False, default=1)
    occurred_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_usage_samples_project_cap_ts', 'project_id', 'cap_type', 'occurred_at'),
    )

    def __repr__(self):
        return f'<UsageSample {self.project_id}:{self.cap_type} +{self.amount}>'

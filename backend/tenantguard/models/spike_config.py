"""
Per-project overrides of the spike detection defaults.
"""
from datetime import datetime
from tenantguard import db


class ProjectSpikeConfig(db.Model):
    __tablename__ = 'spike_detection_configs'

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey('projects.id'), nullable=False, unique=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    warning_multiplier = db.Column(db.Float, nullable=True)
    suspend_multiplier = db.Column(db.Float, nullable=True)
    critical_multiplier = db.Column(db.Float, nullable=True)
    window_seconds = db.Column(db.Integer, nullable=True)
    baseline_periods = db.Column(db.Integer, nullable=True)
    min_usage = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def overrides(self):
        """Return only the fields set on this row."""
        fields = ('warning_multiplier', 'suspend_multiplier', 'critical_multiplier',
                  'window_seconds', 'baseline_periods', 'min_usage')
        return {f: getattr(self, f) for f in fields if getattr(self, f) is not None}

    def to_dict(self):
        data = {'project_id': self.project_id, 'enabled': self.enabled}
        data.update(self.overrides())
        return data

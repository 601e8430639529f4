"""
Periodic usage spike detection.

For every project and cap type, usage in the current window is compared
against the mean of the preceding windows. The multiplier is classified into
ordered tiers; a suspend-tier result on a hard cap suspends the project,
anything else at warning tier or above notifies the owner.

Runs are idempotent: suspensions rely on the unresolved-suspension index and
notifications on their dedupe keys, so overlapping or repeated runs over the
same data take each action once.
"""
import logging
from datetime import datetime, timedelta
from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.errors import NotFoundError, StorageUnavailable, ValidationError
from tenantguard.models.audit_log import Severity
from tenantguard.models.project import Project
from tenantguard.models.spike_config import ProjectSpikeConfig
from tenantguard.services import notifications, quotas, suspensions
from tenantguard.services.spike_config import (
    DEFAULT_SPIKE_CONFIG, SEVERITY_CRITICAL, SEVERITY_NONE, SEVERITY_SEVERE,
    determine_severity, is_safe_config, merge_config, validate_spike_config,
)
from tenantguard.utils import audit_logger
from tenantguard.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1)

SCANNED_STATUSES = ('active', 'suspended')

ACTION_NONE = 'none'
ACTION_WARNING = 'warning'
ACTION_SUSPENSION = 'suspension'
ACTION_ALREADY_SUSPENDED = 'already_suspended'

QUOTA_WARNING_BANDS = (quotas.STATUS_WARNING, quotas.STATUS_CRITICAL, quotas.STATUS_EXCEEDED)

CONFIG_CACHE_KEY = 'tenantguard.spike_config_cache'
DEFAULT_CONFIG_CACHE_TTL = 300


def init_spike_config_cache(app):
    """Attach the per-project override cache to the application.

    Entries are keyed by project id. Updates invalidate the local entry;
    other workers pick the change up when their entry expires.
    """
    ttl = int(app.config.get('SPIKE_CONFIG_CACHE_TTL', DEFAULT_CONFIG_CACHE_TTL))
    app.extensions[CONFIG_CACHE_KEY] = TTLCache(ttl_seconds=ttl)
    return app.extensions[CONFIG_CACHE_KEY]


def spike_config_cache():
    return current_app.extensions[CONFIG_CACHE_KEY]


def default_config():
    if has_app_context():
        return current_app.config.get('SPIKE_DETECTION_CONFIG', DEFAULT_SPIKE_CONFIG)
    return DEFAULT_SPIKE_CONFIG


def window_bucket(now, window_seconds):
    return int((now - EPOCH).total_seconds() // window_seconds)


class SpikeDetector:
    """One detection pass over every scanned project."""

    def __init__(self, config=None, clock=datetime.utcnow, config_cache=None):
        self.config = config or default_config()
        self.clock = clock
        self.config_cache = config_cache if config_cache is not None else spike_config_cache()

    def config_for(self, project_id):
        overrides = self.config_cache.get(project_id)
        if overrides is None:
            row = ProjectSpikeConfig.query.filter_by(project_id=project_id).first()
            overrides = dict(row.overrides(), enabled=row.enabled) if row is not None else {}
            self.config_cache.set(project_id, overrides)
        return merge_config(self.config, overrides)

    def measure(self, project_id, cap_type, limit_value, config, now):
        """Current window usage, baseline average and multiplier for one cap."""
        window = timedelta(seconds=config.window_seconds)
        window_start = now - window
        current_usage = quotas.get_usage(project_id, cap_type, window_start)

        baseline_start = window_start - window * config.baseline_periods
        baseline_total = quotas.get_usage(project_id, cap_type, baseline_start, until=window_start)
        average_usage = baseline_total / config.baseline_periods

        # A silent history still has to catch a jump from zero
        baseline = average_usage if average_usage > 0 else limit_value
        multiplier = current_usage / baseline if baseline > 0 else 0.0
        return current_usage, round(average_usage, 2), round(multiplier, 2)

    def check_project(self, project, now):
        """
        Classify every cap of one project and act on the results.

        Returns:
            (detections, quota_warnings_sent)

        Raises:
            SQLAlchemyError / StorageUnavailable: the caller skips the project
        """
        config = self.config_for(project.id)
        if not config.enabled:
            logger.debug('Spike detection disabled for project %s', project.id)
            return [], 0

        detections = []
        quota_warnings = 0
        for cap_type, cap in quotas.get_effective_caps(project.id).items():
            current_usage, average_usage, multiplier = self.measure(
                project.id, cap_type, cap.limit_value, config, now)

            if current_usage >= config.min_usage:
                severity = determine_severity(multiplier, config)
                if severity != SEVERITY_NONE:
                    detection = {
                        'project_id': project.id,
                        'cap_type': cap_type,
                        'current_usage': current_usage,
                        'average_usage': average_usage,
                        'spike_multiplier': multiplier,
                        'severity': severity,
                        'hard_cap': cap.hard_cap,
                        'action_taken': ACTION_NONE,
                        'detected_at': now.isoformat(),
                    }
                    detection['action_taken'] = self.act(project, cap, detection, config, now)
                    detections.append(detection)

            used_today = quotas.get_current_usage(project.id, cap_type, now)
            status = quotas.calculate_status(used_today, cap.limit_value)
            if status.status in QUOTA_WARNING_BANDS:
                sent = notifications.notify_quota_warning(
                    project, cap_type, status, used_today, cap.limit_value, now.date())
                if sent is not None:
                    quota_warnings += 1

        return detections, quota_warnings

    def act(self, project, cap, detection, config, now):
        suspend_tier = detection['severity'] in (SEVERITY_SEVERE, SEVERITY_CRITICAL)
        if suspend_tier and cap.hard_cap:
            severity = (Severity.CRITICAL if detection['severity'] == SEVERITY_CRITICAL
                        else Severity.ERROR)
            _, created = suspensions.suspend_project(
                project.id, cap.cap_type, detection['current_usage'], cap.limit_value,
                details={
                    'source': 'spike_detection',
                    'average_usage': detection['average_usage'],
                    'spike_multiplier': detection['spike_multiplier'],
                    'severity': detection['severity'],
                },
                severity=severity,
            )
            return ACTION_SUSPENSION if created else ACTION_ALREADY_SUSPENDED

        # Warning tier, or suspend tier on a soft cap
        audit_logger.log_spike_warning(project.id, detection)
        dedupe_key = (f'spike:{project.id}:{cap.cap_type}:{detection["severity"]}:'
                      f'{window_bucket(now, config.window_seconds)}')
        notifications.notify_spike_warning(project, detection, dedupe_key)
        return ACTION_WARNING

    def run(self):
        started_at = self.clock()
        result = {
            'success': True,
            'started_at': started_at.isoformat(),
            'projects_checked': 0,
            'spikes_detected': 0,
            'actions_taken': {'warnings': 0, 'suspensions': 0, 'quota_warnings': 0},
            'detected_spikes': [],
            'errors': [],
        }

        try:
            projects = (Project.query.filter(Project.status.in_(SCANNED_STATUSES))
                        .order_by(Project.id).all())
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Spike detection could not list projects: %s', e)
            result['success'] = False
            result['error'] = 'storage_unavailable'
            audit_logger.log_background_job('spike_detection', False, {'error': 'storage_unavailable'})
            return result

        for project in projects:
            try:
                detections, quota_warnings = self.check_project(project, started_at)
            except (SQLAlchemyError, StorageUnavailable) as e:
                db.session.rollback()
                logger.error('Spike detection skipped project %s: %s', project.id, e)
                result['errors'].append({'project_id': project.id, 'error': 'storage_unavailable'})
                continue

            result['projects_checked'] += 1
            result['actions_taken']['quota_warnings'] += quota_warnings
            for detection in detections:
                result['detected_spikes'].append(detection)
                if detection['action_taken'] == ACTION_WARNING:
                    result['actions_taken']['warnings'] += 1
                elif detection['action_taken'] == ACTION_SUSPENSION:
                    result['actions_taken']['suspensions'] += 1

        result['spikes_detected'] = len(result['detected_spikes'])
        completed_at = self.clock()
        result['completed_at'] = completed_at.isoformat()
        result['duration_ms'] = int((completed_at - started_at).total_seconds() * 1000)

        logger.info('Spike detection checked %d projects: %d spikes, %d warnings, %d suspensions',
                    result['projects_checked'], result['spikes_detected'],
                    result['actions_taken']['warnings'], result['actions_taken']['suspensions'])

        audit_logger.log_background_job('spike_detection', True, {
            'duration_ms': result['duration_ms'],
            'projects_checked': result['projects_checked'],
            'spikes_detected': result['spikes_detected'],
            'warnings': result['actions_taken']['warnings'],
            'suspensions': result['actions_taken']['suspensions'],
            'errors': len(result['errors']),
            'detected_spikes': [
                {'project_id': d['project_id'], 'cap_type': d['cap_type'],
                 'severity': d['severity'], 'multiplier': d['spike_multiplier']}
                for d in result['detected_spikes']
            ],
        })
        return result


def run_spike_detection(config=None):
    return SpikeDetector(config=config).run()


def get_project_spike_config(project_id):
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f'Project {project_id} not found')
    row = ProjectSpikeConfig.query.filter_by(project_id=project_id).first()
    config = SpikeDetector().config_for(project_id)
    return {
        'project_id': project_id,
        'overrides': row.to_dict() if row else {},
        'effective': config._asdict(),
    }


def update_project_spike_config(project_id, data, actor_id=None):
    """
    Upsert per-project detection settings.

    Raises:
        NotFoundError: unknown project
        ValidationError: invalid or unsafe merged configuration
        StorageUnavailable: the write failed
    """
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f'Project {project_id} not found')

    fields = ('enabled', 'warning_multiplier', 'suspend_multiplier', 'critical_multiplier',
              'window_seconds', 'baseline_periods', 'min_usage')
    unknown = sorted(set(data) - set(fields))
    errors = [f'Unknown field: {f}' for f in unknown]
    errors.extend(validate_spike_config({f: data.get(f) for f in fields}))

    merged = merge_config(default_config(), {f: data.get(f) for f in fields})
    if not errors:
        errors.extend(validate_spike_config(merged._asdict()))
        if not errors and not is_safe_config(merged):
            errors.append('suspend_multiplier must be at least 2.0')
    if errors:
        audit_logger.log_validation_failure('update_spike_config', errors,
                                            developer_id=actor_id, project_id=project_id)
        raise ValidationError(errors=errors)

    try:
        row = ProjectSpikeConfig.query.filter_by(project_id=project_id).first()
        if row is None:
            row = ProjectSpikeConfig(project_id=project_id, enabled=True)
            db.session.add(row)
        previous_enabled = row.enabled
        for field in fields:
            if field in data:
                setattr(row, field, data[field])
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to update spike config for project %s: %s', project_id, e)
        raise StorageUnavailable()

    spike_config_cache().invalidate(project_id)
    if 'enabled' in data and data['enabled'] != previous_enabled:
        audit_logger.log_feature_flag('spike_detection', data['enabled'],
                                      developer_id=actor_id, project_id=project_id)
    return row

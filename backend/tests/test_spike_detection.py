from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from tenantguard import create_app, db
from tenantguard.errors import ValidationError
from tenantguard.models import AuditLogEntry, Notification, Project, ProjectSpikeConfig, Suspension
from tenantguard.services.spike_config import DEFAULT_SPIKE_CONFIG
from tenantguard.services.spike_detection import (
    CONFIG_CACHE_KEY, SpikeDetector, get_project_spike_config, spike_config_cache,
    update_project_spike_config,
)

NOW = datetime(2026, 10, 19, 12, 30, 0)
DB_QUERIES = 'db_queries_per_day'

# One preceding window keeps the baseline arithmetic readable
CONFIG = DEFAULT_SPIKE_CONFIG._replace(baseline_periods=1)


@pytest.fixture
def detector(app):
    return SpikeDetector(config=CONFIG, clock=lambda: NOW)


def _current(minutes_ago=30):
    return NOW - timedelta(minutes=minutes_ago)


def _previous_window(minutes_ago=90):
    return NOW - timedelta(minutes=minutes_ago)


def _spikes(result, project):
    return [d for d in result['detected_spikes'] if d['project_id'] == project.id]


class TestSuspendTier:
    def test_hard_cap_spike_creates_suspension(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        add_usage(project, DB_QUERIES, 10_000, _previous_window())
        add_usage(project, DB_QUERIES, 55_000, _current())

        result = detector.run()

        assert result['success']
        assert result['actions_taken']['suspensions'] == 1
        [spike] = _spikes(result, project)
        assert spike['spike_multiplier'] == 5.5
        assert spike['average_usage'] == 10_000
        assert spike['severity'] == 'severe'
        assert spike['action_taken'] == 'suspension'

        suspension = Suspension.query.filter_by(project_id=project.id).one()
        assert suspension.resolved_at is None
        assert suspension.reason['cap_type'] == DB_QUERIES
        assert suspension.reason['current_value'] == 55_000
        assert suspension.reason['limit_exceeded'] == 10_000

        project = db.session.get(Project, project.id)
        assert project.status == 'suspended'
        assert project.data_access == 'disabled'

        log_types = {e.log_type for e in AuditLogEntry.query.all()}
        assert 'suspension' in log_types
        assert 'background_job' in log_types

    def test_soft_cap_spike_only_warns(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, False)})
        add_usage(project, DB_QUERIES, 10_000, _previous_window())
        add_usage(project, DB_QUERIES, 55_000, _current())

        result = detector.run()

        [spike] = _spikes(result, project)
        assert spike['action_taken'] == 'warning'
        assert Suspension.query.count() == 0
        assert db.session.get(Project, project.id).status == 'active'
        assert AuditLogEntry.query.filter_by(log_type='spike_warning').count() == 1

    def test_critical_tier(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        add_usage(project, DB_QUERIES, 1_000, _previous_window())
        add_usage(project, DB_QUERIES, 12_000, _current())

        [spike] = _spikes(detector.run(), project)

        assert spike['severity'] == 'critical'
        entry = AuditLogEntry.query.filter_by(log_type='suspension').one()
        assert entry.severity == 'critical'


class TestWarningTier:
    def test_warning_notifies_owner(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (100_000, True)})
        add_usage(project, DB_QUERIES, 1_000, _previous_window())
        add_usage(project, DB_QUERIES, 3_000, _current())

        result = detector.run()

        [spike] = _spikes(result, project)
        assert spike['severity'] == 'warning'
        assert result['actions_taken']['warnings'] == 1
        notification = Notification.query.filter_by(notification_type='spike_warning').one()
        assert notification.developer_id == project.owner_id
        assert notification.status == 'delivered'

    def test_zero_average_uses_limit_as_baseline(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        add_usage(project, DB_QUERIES, 25_000, _current())

        [spike] = _spikes(detector.run(), project)

        assert spike['average_usage'] == 0
        assert spike['spike_multiplier'] == 2.5
        assert spike['severity'] == 'warning'

    def test_below_min_usage_is_ignored(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (1, True)})
        add_usage(project, DB_QUERIES, CONFIG.min_usage - 1, _current())

        result = detector.run()

        assert _spikes(result, project) == []
        assert Suspension.query.count() == 0

    def test_no_spike_under_warning_tier(self, detector, make_project, add_usage):
        project = make_project()
        add_usage(project, DB_QUERIES, 1_000, _previous_window())
        add_usage(project, DB_QUERIES, 1_500, _current())

        assert _spikes(detector.run(), project) == []


class TestIdempotence:
    def test_rerun_does_not_duplicate_suspensions_or_notifications(
            self, detector, make_project, add_usage):
        suspended = make_project(name='noisy', caps={DB_QUERIES: (10_000, True)})
        add_usage(suspended, DB_QUERIES, 10_000, _previous_window())
        add_usage(suspended, DB_QUERIES, 55_000, _current())
        warned = make_project(name='busy', caps={DB_QUERIES: (100_000, True)})
        add_usage(warned, DB_QUERIES, 1_000, _previous_window())
        add_usage(warned, DB_QUERIES, 3_000, _current())

        first = detector.run()
        notifications_after_first = Notification.query.count()
        second = detector.run()

        assert Suspension.query.count() == 1
        assert Notification.query.count() == notifications_after_first
        assert second['actions_taken']['suspensions'] == 0
        assert [(s['project_id'], s['cap_type'], s['severity']) for s in first['detected_spikes']] == \
            [(s['project_id'], s['cap_type'], s['severity']) for s in second['detected_spikes']]
        assert _spikes(second, suspended)[0]['action_taken'] == 'already_suspended'


class TestFaultIsolation:
    def test_storage_error_skips_project_and_continues(self, detector, make_project, add_usage):
        broken = make_project(name='broken')
        healthy = make_project(name='healthy', caps={DB_QUERIES: (100_000, True)})
        add_usage(healthy, DB_QUERIES, 1_000, _previous_window())
        add_usage(healthy, DB_QUERIES, 3_000, _current())
        broken_id = broken.id
        original = SpikeDetector.check_project

        def flaky(self, project, now):
            if project.id == broken_id:
                raise OperationalError('SELECT', {}, Exception('statement timeout'))
            return original(self, project, now)

        with patch.object(SpikeDetector, 'check_project', flaky):
            result = detector.run()

        assert result['success']
        assert result['projects_checked'] == 1
        assert result['errors'] == [{'project_id': broken_id, 'error': 'storage_unavailable'}]
        assert len(_spikes(result, healthy)) == 1

    def test_listing_failure_reports_unsuccessful_run(self, detector):
        error = OperationalError('SELECT', {}, Exception('connection refused'))
        with patch('tenantguard.services.spike_detection.Project.query') as query:
            query.filter.side_effect = error
            result = detector.run()

        assert not result['success']
        job = AuditLogEntry.query.filter_by(log_type='background_job').one()
        assert job.severity == 'error'


class TestProjectConfig:
    def test_disabled_project_is_skipped(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        add_usage(project, DB_QUERIES, 55_000, _current())
        db.session.add(ProjectSpikeConfig(project_id=project.id, enabled=False))
        db.session.commit()
        spike_config_cache().clear()

        result = detector.run()

        assert _spikes(result, project) == []
        assert Suspension.query.count() == 0

    def test_project_override_changes_tiers(self, detector, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        add_usage(project, DB_QUERIES, 1_000, _previous_window())
        add_usage(project, DB_QUERIES, 3_000, _current())
        db.session.add(ProjectSpikeConfig(project_id=project.id, enabled=True,
                                          warning_multiplier=4.0, suspend_multiplier=8.0,
                                          critical_multiplier=16.0))
        db.session.commit()
        spike_config_cache().clear()

        assert _spikes(detector.run(), project) == []

    def test_update_invalidates_cached_overrides(self, detector, make_project):
        project = make_project()
        assert detector.config_for(project.id).baseline_periods == 1

        update_project_spike_config(project.id, {'baseline_periods': 6, 'min_usage': 50})

        assert detector.config_for(project.id).baseline_periods == 6
        config = get_project_spike_config(project.id)
        assert config['overrides']['baseline_periods'] == 6
        assert config['effective']['min_usage'] == 50

    def test_baseline_periods_must_be_positive(self, make_project):
        project = make_project()
        with pytest.raises(ValidationError):
            update_project_spike_config(project.id, {'baseline_periods': 0})

    def test_each_app_owns_its_cache(self, app, tmp_path):
        other = create_app({
            'SECRET_KEY': 'other-secret',
            'JWT_SECRET_KEY': 'other-jwt',
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'AUDIT_LOG_FILE': str(tmp_path / 'other-audit.log'),
            'SPIKE_CONFIG_CACHE_TTL': 5,
        })
        cache = other.extensions[CONFIG_CACHE_KEY]
        assert cache is not spike_config_cache()
        assert cache.ttl_seconds == 5


def test_quota_band_warning_sent_once_per_day(detector, make_project, add_usage):
    project = make_project(caps={DB_QUERIES: (1_000, True)})
    add_usage(project, DB_QUERIES, 850, NOW - timedelta(hours=5))

    first = detector.run()
    second = detector.run()

    assert first['actions_taken']['quota_warnings'] == 1
    assert second['actions_taken']['quota_warnings'] == 0
    notification = Notification.query.filter_by(notification_type='quota_warning').one()
    assert notification.data['status'] == 'warning'

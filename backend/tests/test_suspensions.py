from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from tenantguard import db
from tenantguard.errors import ProjectSuspendedError, RateLimitExceeded
from tenantguard.models import AuditLogEntry, Notification, Project, Suspension
from tenantguard.services import notifications, suspensions
from tenantguard.services.admission import admit_request
from tenantguard.utils.rate_limiter import RateLimiter

DB_QUERIES = 'db_queries_per_day'
REALTIME = 'realtime_connections'


class TestSuspendProject:
    def test_creates_one_unresolved_suspension(self, make_project):
        project = make_project()

        first, created = suspensions.suspend_project(project.id, DB_QUERIES, 12_000, 10_000)
        second, created_again = suspensions.suspend_project(project.id, DB_QUERIES, 13_000, 10_000)

        assert created and not created_again
        assert first.id == second.id
        assert Suspension.query.filter_by(project_id=project.id).count() == 1
        assert AuditLogEntry.query.filter_by(log_type='suspension').count() == 1
        assert Notification.query.filter_by(notification_type='suspension').count() == 1

    def test_store_rejects_second_unresolved_row(self, make_project):
        project = make_project()
        for _ in range(2):
            db.session.add(Suspension(project_id=project.id, reason={}, cap_exceeded=DB_QUERIES))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_lost_race_returns_existing_suspension(self, make_project):
        project = make_project()
        existing, _ = suspensions.suspend_project(project.id, DB_QUERIES, 12_000, 10_000)
        lookup = suspensions.get_active_suspension
        stale_reads = [None]

        def racing_lookup(project_id):
            return stale_reads.pop() if stale_reads else lookup(project_id)

        with patch.object(suspensions, 'get_active_suspension', side_effect=racing_lookup):
            suspension, created = suspensions.suspend_project(project.id, DB_QUERIES,
                                                              13_000, 10_000)

        assert not created
        assert suspension.id == existing.id
        assert Suspension.query.filter_by(project_id=project.id).count() == 1
        assert AuditLogEntry.query.filter_by(log_type='suspension').count() == 1
        assert Notification.query.filter_by(notification_type='suspension').count() == 1

    def test_notification_failure_keeps_suspension(self, make_project):
        project = make_project()
        error = OperationalError('INSERT', {}, Exception('connection reset'))

        with patch.object(notifications, '_persist_and_deliver', side_effect=error):
            suspension, created = suspensions.suspend_project(project.id, DB_QUERIES,
                                                              12_000, 10_000)

        assert created
        assert suspensions.get_active_suspension(project.id).id == suspension.id
        assert AuditLogEntry.query.filter_by(log_type='suspension').count() == 1

    def test_resolved_suspensions_do_not_block_new_ones(self, make_project):
        project = make_project()
        db.session.add(Suspension(project_id=project.id, reason={}, cap_exceeded=DB_QUERIES,
                                  resolved_at=datetime.utcnow()))
        db.session.commit()

        _, created = suspensions.suspend_project(project.id, DB_QUERIES, 12_000, 10_000)

        assert created
        assert len(suspensions.get_suspension_history(project.id)) == 2


class TestAccess:
    def test_suspended_project_reports_violated_cap(self, make_project):
        project = make_project()
        suspensions.suspend_project(project.id, DB_QUERIES, 12_000, 10_000)

        with pytest.raises(ProjectSuspendedError) as exc:
            suspensions.check_project_access(project.id)

        body = exc.value.to_dict()
        assert body['cap_type'] == DB_QUERIES
        assert body['current_value'] == 12_000
        assert body['limit'] == 10_000

    def test_read_only_rejects_writes_only(self, make_project):
        project = make_project(data_access='read_only')

        assert suspensions.check_project_access(project.id).id == project.id
        with pytest.raises(ProjectSuspendedError):
            suspensions.check_project_access(project.id, write=True)

    def test_suspension_is_authoritative_over_rate_limiter(self, make_project):
        project = make_project(data_access='read_only')
        limiter = RateLimiter(scope='admission_test')

        with pytest.raises(ProjectSuspendedError):
            admit_request(project.id, write=True, limiter=limiter, limit=(100, 60))

    def test_admission_rate_limits_active_project(self, make_project):
        project = make_project()
        limiter = RateLimiter(scope='admission_test')

        admit_request(project.id, limiter=limiter, limit=(1, 60))
        with pytest.raises(RateLimitExceeded):
            admit_request(project.id, limiter=limiter, limit=(1, 60))


class TestEnforcementJob:
    def test_hard_cap_breach_suspends(self, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (100, True)})
        add_usage(project, DB_QUERIES, 150)

        result = suspensions.check_all_projects_for_suspension()

        assert result['suspended'] == [project.id]
        assert db.session.get(Project, project.id).status == 'suspended'

    def test_soft_cap_breach_only_warns(self, make_project, add_usage):
        project = make_project(caps={REALTIME: (10, False)})
        add_usage(project, REALTIME, 12)

        result = suspensions.check_all_projects_for_suspension()

        assert result['suspended'] == []
        assert result['soft_cap_warnings'] == 1
        assert db.session.get(Project, project.id).status == 'active'

    def test_usage_from_previous_days_is_ignored(self, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (100, True)})
        add_usage(project, DB_QUERIES, 500, datetime.utcnow() - timedelta(days=2))

        assert suspensions.check_all_projects_for_suspension()['suspended'] == []


class TestRecheck:
    def test_restores_project_back_under_limit(self, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (100, True)})
        yesterday = datetime.utcnow() - timedelta(days=1)
        add_usage(project, DB_QUERIES, 150, yesterday)
        suspensions.suspend_project(project.id, DB_QUERIES, 150, 100)

        result = suspensions.recheck_suspensions()

        assert result['resolved'] == [project.id]
        project = db.session.get(Project, project.id)
        assert project.status == 'active'
        assert project.data_access == 'full'
        assert suspensions.get_active_suspension(project.id) is None
        assert AuditLogEntry.query.filter_by(log_type='unsuspension').count() == 1

    def test_keeps_suspension_while_still_over(self, make_project, add_usage):
        project = make_project(caps={DB_QUERIES: (100, True)})
        add_usage(project, DB_QUERIES, 150)
        suspensions.suspend_project(project.id, DB_QUERIES, 150, 100)

        assert suspensions.recheck_suspensions()['resolved'] == []
        assert db.session.get(Project, project.id).status == 'suspended'


def test_active_suspensions_listing(make_project):
    first = make_project(name='one')
    second = make_project(name='two')
    suspensions.suspend_project(first.id, DB_QUERIES, 2, 1)
    suspensions.suspend_project(second.id, DB_QUERIES, 2, 1)
    suspensions.resolve_suspension(first.id, notes='fixed')

    items, total = suspensions.get_active_suspensions()

    assert total == 1
    assert items[0].project_id == second.id

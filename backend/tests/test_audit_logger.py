import logging
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from tenantguard import db
from tenantguard.models import AuditLogEntry, LogType, Severity
from tenantguard.utils import audit_logger


class TestLog:
    def test_persists_entry(self, app):
        result = audit_logger.log(LogType.BACKGROUND_JOB, 'nightly run',
                                  details={'projects': 3}, ip_address='10.0.0.1')

        assert result.ok
        entry = db.session.get(AuditLogEntry, result.entry_id)
        assert entry.log_type == 'background_job'
        assert entry.severity == 'info'
        assert entry.details == {'projects': 3}

    def test_store_failure_never_raises(self, app):
        error = OperationalError('INSERT', {}, Exception('disk full'))
        with patch.object(db.session, 'commit', side_effect=error):
            result = audit_logger.log(LogType.SUSPENSION, 'Project suspended')

        assert not result.ok
        assert result.entry_id is None
        assert 'disk full' in result.error
        assert AuditLogEntry.query.count() == 0

    def test_without_app_context_never_raises(self):
        result = audit_logger.log(LogType.AUTH_FAILURE, 'denied')
        assert not result.ok

    def test_diagnostics_failure_never_raises(self, app):
        channel = MagicMock()
        channel.log.side_effect = ValueError('broken handler')
        with patch.object(audit_logger, 'get_audit_logger', return_value=channel):
            result = audit_logger.log(LogType.BACKGROUND_JOB, 'run')
        assert result.ok

    def test_severity_routes_to_log_level(self, app):
        channel = MagicMock()
        with patch.object(audit_logger, 'get_audit_logger', return_value=channel):
            audit_logger.log_suspension(1, {'cap_type': 'db_queries_per_day'})
            audit_logger.log_background_job('spike_detection', False)

        levels = [c.args[0] for c in channel.log.call_args_list]
        assert levels == [logging.CRITICAL, logging.ERROR]

    def test_truncates_user_agent(self, app):
        result = audit_logger.log(LogType.AUTH_FAILURE, 'denied', user_agent='x' * 2000)
        assert len(db.session.get(AuditLogEntry, result.entry_id).user_agent) == 512


class TestHelpers:
    def test_manual_intervention_is_warning(self, app):
        result = audit_logger.log_manual_intervention(5, 7, 'Manual override: unsuspend',
                                                      ip_address='203.0.113.1',
                                                      user_agent='curl/8')
        entry = db.session.get(AuditLogEntry, result.entry_id)
        assert entry.severity == Severity.WARNING.value
        assert entry.project_id == 5
        assert entry.developer_id == 7

    def test_feature_flag_types(self, app):
        audit_logger.log_feature_flag('spike_detection', True, project_id=1)
        audit_logger.log_feature_flag('spike_detection', False, project_id=1)
        types = [e.log_type for e in AuditLogEntry.query.order_by(AuditLogEntry.id)]
        assert types == ['feature_flag.enabled', 'feature_flag.disabled']

    def test_query_filters(self, app):
        audit_logger.log_suspension(1, {})
        audit_logger.log_suspension(2, {})
        audit_logger.log_auth_failure(9, 'insufficient_role', 'override')

        entries, total = audit_logger.query_audit_logs(log_type='suspension', project_id=2)
        assert total == 1
        assert entries[0].project_id == 2

        entries, total = audit_logger.query_audit_logs(limit=1)
        assert total == 3
        assert entries[0].log_type == 'auth_failure'

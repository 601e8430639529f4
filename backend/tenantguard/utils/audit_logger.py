"""
Append-only audit logging for abuse-control events.

Every entry is written to the ``audit_logs`` table and mirrored as JSON to
the structlog ``audit`` channel at a level matching its severity. Writing
an entry never raises: an audit failure must not block the action it
describes, so failures are reported locally and returned as a failed
``AuditResult`` the caller is free to ignore.

Call ``log`` after committing the primary action; the entry is committed on
its own.
"""
import os
import logging
from collections import namedtuple
from datetime import datetime
import structlog
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.models.audit_log import AuditLogEntry, LogType, Severity

logger = logging.getLogger(__name__)

AuditResult = namedtuple('AuditResult', ['ok', 'entry_id', 'error'])

_LEVELS = {
    Severity.INFO.value: logging.INFO,
    Severity.WARNING.value: logging.WARNING,
    Severity.ERROR.value: logging.ERROR,
    Severity.CRITICAL.value: logging.CRITICAL,
}


def setup_audit_logging(app):
    """Configure structured audit logging."""

    log_file = app.config.get('AUDIT_LOG_FILE') or os.getenv('AUDIT_LOG_FILE', 'logs/audit.log')
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    audit_logger = logging.getLogger('audit')
    audit_logger.setLevel(logging.INFO)
    if not any(getattr(h, 'baseFilename', None) == os.path.abspath(log_file)
               for h in audit_logger.handlers):
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        audit_logger.addHandler(file_handler)

    app.config['AUDIT_LOGGER'] = structlog.get_logger('audit')


def get_audit_logger():
    """Get the structlog audit channel, falling back outside an app context."""
    from flask import current_app, has_app_context
    if has_app_context():
        return current_app.config.get('AUDIT_LOGGER', structlog.get_logger('audit'))
    return structlog.get_logger('audit')


def _value(enum_or_str):
    return getattr(enum_or_str, 'value', enum_or_str)


def _emit(entry_dict):
    channel = get_audit_logger()
    level = _LEVELS.get(entry_dict['severity'], logging.INFO)
    channel.log(level, 'audit_event', **entry_dict)


def log(log_type, action, severity=Severity.INFO, project_id=None, developer_id=None,
        details=None, ip_address=None, user_agent=None):
    """
    Append an audit entry.

    Args:
        log_type: A ``LogType`` (or its string value)
        action: Short description of what happened
        severity: info, warning, error or critical
        project_id: Project the event concerns (optional)
        developer_id: Actor or subject developer (optional)
        details: Structured context (optional)
        ip_address: Client IP of the actor (optional)
        user_agent: Client user agent (optional)

    Returns:
        AuditResult(ok, entry_id, error). Never raises.
    """
    entry_dict = {
        'log_type': _value(log_type),
        'severity': _value(severity),
        'project_id': project_id,
        'developer_id': developer_id,
        'action': action,
        'details': details or {},
        'ip_address': ip_address,
        'user_agent': user_agent[:512] if user_agent else None,
        'occurred_at': datetime.utcnow(),
    }

    entry_id = None
    error = None
    try:
        entry = AuditLogEntry(**entry_dict)
        db.session.add(entry)
        db.session.commit()
        entry_id = entry.id
    except SQLAlchemyError as e:
        db.session.rollback()
        error = str(e)
        logger.error('Failed to persist audit entry %s/%s: %s',
                     entry_dict['log_type'], action, e)
    except RuntimeError as e:
        # No application context to reach the store from
        error = str(e)
        logger.error('Audit entry %s/%s not persisted: %s',
                     entry_dict['log_type'], action, e)

    try:
        payload = dict(entry_dict, occurred_at=entry_dict['occurred_at'].isoformat(),
                       entry_id=entry_id, persisted=error is None)
        _emit(payload)
    except Exception as e:  # diagnostics must never break the caller either
        logger.error('Failed to emit audit diagnostics: %s', e)

    return AuditResult(error is None, entry_id, error)


def log_suspension(project_id, reason, suspension_id=None, severity=Severity.CRITICAL):
    return log(LogType.SUSPENSION, 'Project suspended', severity=severity,
               project_id=project_id,
               details={'reason': reason, 'suspension_id': suspension_id})


def log_unsuspension(project_id, suspension_id, resolved_by=None, notes=None,
                     ip_address=None, user_agent=None):
    return log(LogType.UNSUSPENSION, 'Project unsuspended', severity=Severity.WARNING,
               project_id=project_id, developer_id=resolved_by,
               details={'suspension_id': suspension_id, 'notes': notes,
                        'automatic': resolved_by is None},
               ip_address=ip_address, user_agent=user_agent)


def log_spike_warning(project_id, detection):
    return log(LogType.SPIKE_WARNING, 'Usage spike warning', severity=Severity.WARNING,
               project_id=project_id, details=detection)


def log_auth_failure(developer_id, reason, operation, ip_address=None, user_agent=None):
    return log(LogType.AUTH_FAILURE, f'Authorization denied for {operation}',
               severity=Severity.WARNING, developer_id=developer_id,
               details={'reason': reason, 'operation': operation},
               ip_address=ip_address, user_agent=user_agent)


def log_rate_limit_exceeded(identifier, operation, limit, ip_address=None, developer_id=None):
    return log(LogType.RATE_LIMIT_EXCEEDED, f'Rate limit exceeded for {operation}',
               severity=Severity.WARNING, developer_id=developer_id,
               details={'identifier': identifier, 'operation': operation, 'limit': limit},
               ip_address=ip_address)


def log_validation_failure(operation, errors, developer_id=None, project_id=None,
                           ip_address=None):
    return log(LogType.VALIDATION_FAILURE, f'Validation failed for {operation}',
               severity=Severity.INFO, developer_id=developer_id, project_id=project_id,
               details={'operation': operation, 'errors': list(errors)},
               ip_address=ip_address)


def log_background_job(job_name, success, details=None):
    return log(LogType.BACKGROUND_JOB, f'Background job {job_name} '
               f'{"completed" if success else "failed"}',
               severity=Severity.INFO if success else Severity.ERROR,
               details=dict(details or {}, job=job_name, success=success))


def log_manual_intervention(project_id, developer_id, action, details=None,
                            ip_address=None, user_agent=None):
    return log(LogType.MANUAL_INTERVENTION, action, severity=Severity.WARNING,
               project_id=project_id, developer_id=developer_id,
               details=details, ip_address=ip_address, user_agent=user_agent)


def log_feature_flag(flag_name, enabled, developer_id=None, project_id=None):
    log_type = LogType.FEATURE_FLAG_ENABLED if enabled else LogType.FEATURE_FLAG_DISABLED
    return log(log_type, f'Feature flag {flag_name} {"enabled" if enabled else "disabled"}',
               developer_id=developer_id, project_id=project_id,
               details={'flag': flag_name})


def request_context():
    """Return (ip_address, user_agent) of the current request, if any."""
    from flask import request, has_request_context
    if not has_request_context():
        return None, None
    from tenantguard.utils.rate_limiter import extract_client_ip
    return extract_client_ip(request.headers), request.headers.get('User-Agent')


def query_audit_logs(log_type=None, project_id=None, developer_id=None, severity=None,
                     since=None, limit=100, offset=0):
    """Read entries newest first. Used by the operator surface only."""
    query = AuditLogEntry.query
    if log_type:
        query = query.filter(AuditLogEntry.log_type == log_type)
    if project_id is not None:
        query = query.filter(AuditLogEntry.project_id == project_id)
    if developer_id is not None:
        query = query.filter(AuditLogEntry.developer_id == developer_id)
    if severity:
        query = query.filter(AuditLogEntry.severity == severity)
    if since is not None:
        query = query.filter(AuditLogEntry.occurred_at >= since)
    total = query.count()
    entries = (query.order_by(AuditLogEntry.occurred_at.desc(), AuditLogEntry.id.desc())
               .offset(offset).limit(limit).all())
    return entries, total

"""
Operator abuse dashboard: suspensions, rate-limit hits, cap violations and
projects approaching their caps over a recent time range.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.errors import StorageUnavailable, ValidationError
from tenantguard.models.audit_log import AuditLogEntry, LogType
from tenantguard.models.project import Project
from tenantguard.models.suspension import Suspension
from tenantguard.models.usage_sample import UsageSample
from tenantguard.services import quotas

logger = logging.getLogger(__name__)

TIME_RANGES = {'24h': 24, '7d': 168, '30d': 720}
DEFAULT_TIME_RANGE = '24h'

MAX_VIOLATIONS = 50
MAX_APPROACHING = 20
APPROACHING_PERCENTAGE = 80


def suspension_stats(start, end):
    in_range = Suspension.query.filter(Suspension.suspended_at >= start,
                                       Suspension.suspended_at <= end)
    by_type = dict(
        db.session.query(Suspension.cap_exceeded, func.count(Suspension.id))
        .filter(Suspension.suspended_at >= start, Suspension.suspended_at <= end)
        .group_by(Suspension.cap_exceeded)
        .all()
    )
    return {
        'total': in_range.count(),
        'active': Suspension.query.filter(Suspension.resolved_at.is_(None)).count(),
        'by_type': by_type,
    }


def rate_limit_stats(start, end):
    """Rejected requests, grouped by identifier type (ip/org) and operation."""
    entries = AuditLogEntry.query.filter(
        AuditLogEntry.log_type == LogType.RATE_LIMIT_EXCEEDED.value,
        AuditLogEntry.occurred_at >= start,
        AuditLogEntry.occurred_at <= end,
    ).all()

    by_type = Counter()
    by_operation = Counter()
    for entry in entries:
        details = entry.details or {}
        identifier = str(details.get('identifier') or '')
        by_type[identifier.split(':', 1)[0] or 'unknown'] += 1
        by_operation[details.get('operation') or 'unknown'] += 1

    return {
        'total': len(entries),
        'by_type': dict(by_type),
        'by_operation': dict(by_operation),
    }


def cap_violations(start, end, limit=MAX_VIOLATIONS):
    rows = (db.session.query(Suspension, Project.name)
            .join(Project, Suspension.project_id == Project.id)
            .filter(Suspension.suspended_at >= start, Suspension.suspended_at <= end)
            .order_by(Suspension.suspended_at.desc(), Suspension.id.desc())
            .limit(limit)
            .all())
    violations = [{
        'project_id': suspension.project_id,
        'project_name': project_name,
        'cap_exceeded': suspension.cap_exceeded,
        'reason': suspension.reason,
        'suspended_at': suspension.suspended_at.isoformat(),
        'resolved': suspension.is_resolved,
    } for suspension, project_name in rows]
    return {'total': len(violations), 'violations': violations}


def approaching_caps(now=None, limit=MAX_APPROACHING):
    """Active projects whose usage today is at or above 80% of a cap."""
    since = quotas.start_of_day(now)
    usage_rows = (db.session.query(UsageSample.project_id, UsageSample.cap_type,
                                   func.sum(UsageSample.amount))
                  .join(Project, UsageSample.project_id == Project.id)
                  .filter(Project.status == 'active', UsageSample.occurred_at >= since)
                  .group_by(UsageSample.project_id, UsageSample.cap_type)
                  .all())

    caps_by_project = {}
    names = {}
    projects = []
    for project_id, cap_type, used in usage_rows:
        if project_id not in caps_by_project:
            caps_by_project[project_id] = quotas.get_effective_caps(project_id)
            names[project_id] = db.session.get(Project, project_id).name
        cap = caps_by_project[project_id].get(cap_type)
        if cap is None:
            continue
        status = quotas.calculate_status(int(used or 0), cap.limit_value)
        if status.percentage < APPROACHING_PERCENTAGE:
            continue
        projects.append({
            'project_id': project_id,
            'project_name': names[project_id],
            'cap_type': cap_type,
            'cap_value': cap.limit_value,
            'hard_cap': cap.hard_cap,
            'current_usage': int(used),
            'usage_percentage': status.percentage,
            'status': status.status,
        })

    projects.sort(key=lambda p: (-p['usage_percentage'], p['project_id']))
    projects = projects[:limit]
    return {'total': len(projects), 'projects': projects}


def get_dashboard(time_range=DEFAULT_TIME_RANGE, now=None):
    """
    Summary for the operator dashboard.

    Raises:
        ValidationError: unknown time range
        StorageUnavailable: the store could not be read
    """
    if time_range not in TIME_RANGES:
        raise ValidationError(f'time_range must be one of: {", ".join(TIME_RANGES)}')

    end = now or datetime.utcnow()
    start = end - timedelta(hours=TIME_RANGES[time_range])
    try:
        return {
            'time_range': time_range,
            'start_time': start.isoformat(),
            'end_time': end.isoformat(),
            'suspensions': suspension_stats(start, end),
            'rate_limits': rate_limit_stats(start, end),
            'cap_violations': cap_violations(start, end),
            'approaching_caps': approaching_caps(end),
        }
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to build abuse dashboard: %s', e)
        raise StorageUnavailable()

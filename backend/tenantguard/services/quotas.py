"""
Per-project caps, usage totals and status banding.
"""
import logging
from collections import namedtuple
from datetime import datetime, time as dt_time
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantguard import db
from tenantguard.errors import NotFoundError, StorageUnavailable, ValidationError
from tenantguard.models.project import Project
from tenantguard.models.quota import ProjectCap, CAP_TYPES, DEFAULT_CAPS
from tenantguard.models.usage_sample import UsageSample
from tenantguard.utils.validators import validate_cap_update

logger = logging.getLogger(__name__)

STATUS_OK = 'ok'
STATUS_WARNING = 'warning'
STATUS_CRITICAL = 'critical'
STATUS_EXCEEDED = 'exceeded'

QuotaStatus = namedtuple('QuotaStatus', ['status', 'percentage'])

EffectiveCap = namedtuple('EffectiveCap', ['cap_type', 'limit_value', 'hard_cap', 'is_default'])


def calculate_status(used, limit):
    """Band usage against a limit: exceeded >= 100%, critical >= 90%, warning >= 80%."""
    percentage = (used / limit * 100) if limit > 0 else 0
    if percentage >= 100:
        status = STATUS_EXCEEDED
    elif percentage >= 90:
        status = STATUS_CRITICAL
    elif percentage >= 80:
        status = STATUS_WARNING
    else:
        status = STATUS_OK
    return QuotaStatus(status, round(percentage, 2))


def start_of_day(now=None):
    now = now or datetime.utcnow()
    return datetime.combine(now.date(), dt_time.min)


def get_effective_caps(project_id):
    """All cap types for a project, with defaults filling missing rows."""
    rows = {c.cap_type: c for c in ProjectCap.query.filter_by(project_id=project_id).all()}
    caps = {}
    for cap_type in CAP_TYPES:
        row = rows.get(cap_type)
        if row is not None:
            caps[cap_type] = EffectiveCap(cap_type, row.limit_value, row.hard_cap, False)
        else:
            caps[cap_type] = EffectiveCap(cap_type, DEFAULT_CAPS[cap_type], True, True)
    return caps


def caps_snapshot(project_id):
    """``{cap_type: limit_value}`` for every cap type."""
    return {cap_type: cap.limit_value for cap_type, cap in get_effective_caps(project_id).items()}


def ensure_caps(project_id):
    """Materialize default rows so every cap type has exactly one row."""
    existing = {c.cap_type for c in ProjectCap.query.filter_by(project_id=project_id).all()}
    created = []
    for cap_type in CAP_TYPES:
        if cap_type not in existing:
            cap = ProjectCap(project_id=project_id, cap_type=cap_type,
                             limit_value=DEFAULT_CAPS[cap_type], hard_cap=True)
            db.session.add(cap)
            created.append(cap)
    return created


def apply_cap_value(project_id, cap_type, limit_value, hard_cap=None):
    """Stage a cap change in the current session without committing."""
    cap = ProjectCap.query.filter_by(project_id=project_id, cap_type=cap_type).first()
    if cap is None:
        cap = ProjectCap(project_id=project_id, cap_type=cap_type, hard_cap=True)
        db.session.add(cap)
    cap.limit_value = int(limit_value)
    if hard_cap is not None:
        cap.hard_cap = bool(hard_cap)
    cap.updated_at = datetime.utcnow()
    return cap


def set_project_cap(project_id, cap_type, limit_value, hard_cap=None):
    """
    Validate and persist a cap.

    Raises:
        NotFoundError: unknown project
        ValidationError: bad cap type or value
        StorageUnavailable: the store rejected the write
    """
    errors = validate_cap_update(cap_type, limit_value, hard_cap)
    if errors:
        raise ValidationError(errors=errors)
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f'Project {project_id} not found')

    try:
        cap = apply_cap_value(project_id, cap_type, limit_value, hard_cap)
        db.session.commit()
    except IntegrityError:
        # Concurrent first write of the same cap row; retry as an update
        db.session.rollback()
        try:
            cap = apply_cap_value(project_id, cap_type, limit_value, hard_cap)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Failed to set cap %s for project %s: %s', cap_type, project_id, e)
            raise StorageUnavailable()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to set cap %s for project %s: %s', cap_type, project_id, e)
        raise StorageUnavailable()

    logger.info('Cap %s for project %s set to %s', cap_type, project_id, cap.limit_value)
    return cap


def get_usage(project_id, cap_type, since, until=None):
    query = db.session.query(func.coalesce(func.sum(UsageSample.amount), 0)).filter(
        UsageSample.project_id == project_id,
        UsageSample.cap_type == cap_type,
        UsageSample.occurred_at >= since,
    )
    if until is not None:
        query = query.filter(UsageSample.occurred_at < until)
    return int(query.scalar() or 0)


def get_current_usage(project_id, cap_type, now=None):
    """Usage since the start of the current UTC day."""
    return get_usage(project_id, cap_type, start_of_day(now))


def record_usage(project_id, cap_type, amount=1, occurred_at=None):
    sample = UsageSample(project_id=project_id, cap_type=cap_type, amount=int(amount),
                         occurred_at=occurred_at or datetime.utcnow())
    db.session.add(sample)
    return sample


def get_project_quota_report(project_id, now=None):
    """Quota read model: each cap with today's usage and its status band."""
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f'Project {project_id} not found')

    quotas = []
    for cap_type, cap in get_effective_caps(project_id).items():
        used = get_current_usage(project_id, cap_type, now)
        status = calculate_status(used, cap.limit_value)
        quotas.append({
            'cap_type': cap_type,
            'limit': cap.limit_value,
            'hard_cap': cap.hard_cap,
            'used': used,
            'percentage': status.percentage,
            'status': status.status,
            'is_default': cap.is_default,
        })

    return {
        'project_id': project.id,
        'status': project.status,
        'data_access': project.data_access,
        'quotas': quotas,
    }

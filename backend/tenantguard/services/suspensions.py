"""
Suspension state: ``active -> suspended -> active``.

Only a hard-cap breach suspends a project and only an operator override or
a re-check showing usage back under the limit restores it. Writes use a
conditional statement or the unresolved-suspension index so two actors can
never double-suspend or double-restore the same project.
"""
import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantguard import db
from tenantguard.errors import NotFoundError, ProjectSuspendedError, StorageUnavailable
from tenantguard.models.audit_log import Severity
from tenantguard.models.project import Project
from tenantguard.models.suspension import Suspension
from tenantguard.services import notifications, quotas
from tenantguard.utils import audit_logger

logger = logging.getLogger(__name__)

RESTORABLE_STATUSES = ('suspended',)
TERMINAL_STATUSES = ('archived', 'deleted')


def get_active_suspension(project_id):
    return Suspension.query.filter(
        Suspension.project_id == project_id,
        Suspension.resolved_at.is_(None),
    ).first()


def suspend_project(project_id, cap_type, current_value, limit, details=None,
                    suspension_type='automatic', notes=None, severity=Severity.CRITICAL):
    """
    Suspend a project for a hard-cap breach.

    Returns:
        (suspension, created). When an unresolved suspension already exists
        it is returned with ``created=False`` and nothing is written.

    Raises:
        NotFoundError: unknown project
        StorageUnavailable: the store failed; suspension creation never fails silently
    """
    try:
        existing = get_active_suspension(project_id)
        if existing is not None:
            return existing, False

        project = db.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f'Project {project_id} not found')

        suspension = Suspension(
            project_id=project_id,
            reason={
                'cap_type': cap_type,
                'current_value': current_value,
                'limit_exceeded': limit,
                'details': details or {},
            },
            cap_exceeded=cap_type,
            suspension_type=suspension_type,
            suspended_at=datetime.utcnow(),
            notes=notes,
        )
        db.session.add(suspension)
        project.status = 'suspended'
        project.data_access = 'disabled'
        db.session.commit()
    except IntegrityError:
        # Lost the race to a concurrent run; theirs is the suspension
        db.session.rollback()
        return get_active_suspension(project_id), False
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to suspend project %s: %s', project_id, e)
        raise StorageUnavailable()

    logger.warning('Project %s suspended: %s at %s exceeds %s',
                   project_id, cap_type, current_value, limit)
    audit_logger.log_suspension(project_id, suspension.reason, suspension_id=suspension.id,
                                severity=severity)
    notifications.notify_suspension(project, suspension)
    return suspension, True


def stage_resolution(project, notes=None, now=None):
    """
    Resolve the open suspension and restore the project within the current
    transaction. The caller commits.

    Returns the resolved suspension id, or None if nothing was open.
    """
    now = now or datetime.utcnow()
    open_suspension = get_active_suspension(project.id)
    resolved_id = None
    if open_suspension is not None:
        values = {'resolved_at': now}
        if notes:
            values['notes'] = notes
        updated = Suspension.query.filter(
            Suspension.id == open_suspension.id,
            Suspension.resolved_at.is_(None),
        ).update(values, synchronize_session='fetch')
        if updated:
            resolved_id = open_suspension.id

    if project.status in RESTORABLE_STATUSES:
        project.status = 'active'
        project.data_access = 'full'
    return resolved_id


def resolve_suspension(project_id, notes=None, resolved_by=None):
    """Automatic restoration path. Returns the resolved suspension id or None."""
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f'Project {project_id} not found')
    try:
        resolved_id = stage_resolution(project, notes=notes)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to resolve suspension for project %s: %s', project_id, e)
        raise StorageUnavailable()

    if resolved_id is not None:
        logger.info('Suspension %s of project %s resolved', resolved_id, project_id)
        audit_logger.log_unsuspension(project_id, resolved_id, resolved_by=resolved_by, notes=notes)
        notifications.notify_unsuspension(project, f'suspension-{resolved_id}', reason=notes)
    return resolved_id


def check_project_access(project_id, write=False):
    """
    Admission check against suspension state. Authoritative over rate limiting.

    Raises:
        NotFoundError: unknown project
        ProjectSuspendedError: suspended, terminal, or writes on a read-only project
    """
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f'Project {project_id} not found')

    if project.status == 'suspended':
        open_suspension = get_active_suspension(project_id)
        reason = open_suspension.reason if open_suspension else {}
        raise ProjectSuspendedError(
            project_id,
            cap_type=reason.get('cap_type'),
            current_value=reason.get('current_value'),
            limit=reason.get('limit_exceeded'),
        )
    if project.status in TERMINAL_STATUSES:
        raise ProjectSuspendedError(project_id, message=f'Project {project_id} is {project.status}')
    if write and project.is_write_restricted:
        raise ProjectSuspendedError(
            project_id, message=f'Project {project_id} is {project.data_access}; writes are rejected')
    return project


def check_all_projects_for_suspension(now=None):
    """
    Hard-cap enforcement job over today's usage.

    Hard caps at or over their limit suspend the project; soft caps only
    raise a quota warning.
    """
    now = now or datetime.utcnow()
    result = {'projects_checked': 0, 'suspended': [], 'soft_cap_warnings': 0, 'errors': []}

    try:
        projects = Project.query.filter_by(status='active').order_by(Project.id).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Suspension check could not list projects: %s', e)
        audit_logger.log_background_job('suspension_check', False, {'error': 'storage_unavailable'})
        raise StorageUnavailable()

    for project in projects:
        try:
            for cap_type, cap in quotas.get_effective_caps(project.id).items():
                used = quotas.get_current_usage(project.id, cap_type, now)
                status = quotas.calculate_status(used, cap.limit_value)
                if status.status != quotas.STATUS_EXCEEDED:
                    continue
                if cap.hard_cap:
                    suspension, created = suspend_project(
                        project.id, cap_type, used, cap.limit_value,
                        details={'source': 'quota_check', 'percentage': status.percentage})
                    if created:
                        result['suspended'].append(project.id)
                    break
                sent = notifications.notify_quota_warning(
                    project, cap_type, status, used, cap.limit_value, now.date())
                if sent is not None:
                    result['soft_cap_warnings'] += 1
            result['projects_checked'] += 1
        except (SQLAlchemyError, StorageUnavailable) as e:
            db.session.rollback()
            logger.error('Suspension check skipped project %s: %s', project.id, e)
            result['errors'].append({'project_id': project.id, 'error': 'storage_unavailable'})

    audit_logger.log_background_job('suspension_check', True, {
        'projects_checked': result['projects_checked'],
        'suspended': len(result['suspended']),
        'errors': len(result['errors']),
    })
    return result


def recheck_suspensions(now=None):
    """Restore automatically suspended projects whose usage is back under the limit."""
    now = now or datetime.utcnow()
    result = {'checked': 0, 'resolved': [], 'errors': []}

    try:
        open_suspensions = Suspension.query.filter(
            Suspension.resolved_at.is_(None),
            Suspension.suspension_type == 'automatic',
        ).order_by(Suspension.suspended_at).all()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Suspension re-check could not list suspensions: %s', e)
        audit_logger.log_background_job('suspension_recheck', False, {'error': 'storage_unavailable'})
        raise StorageUnavailable()

    for suspension in open_suspensions:
        project_id = suspension.project_id
        cap_type = suspension.cap_exceeded
        try:
            cap = quotas.get_effective_caps(project_id).get(cap_type)
            result['checked'] += 1
            if cap is None:
                continue
            used = quotas.get_current_usage(project_id, cap_type, now)
            if used < cap.limit_value:
                resolved_id = resolve_suspension(
                    project_id, notes=f'Automatic re-check: {cap_type} at {used} of {cap.limit_value}')
                if resolved_id is not None:
                    result['resolved'].append(project_id)
        except (SQLAlchemyError, StorageUnavailable) as e:
            db.session.rollback()
            logger.error('Suspension re-check skipped project %s: %s', project_id, e)
            result['errors'].append({'project_id': project_id, 'error': 'storage_unavailable'})

    audit_logger.log_background_job('suspension_recheck', True, {
        'checked': result['checked'],
        'resolved': len(result['resolved']),
        'errors': len(result['errors']),
    })
    return result


def get_active_suspensions(limit=50, offset=0):
    query = Suspension.query.filter(Suspension.resolved_at.is_(None))
    total = query.count()
    items = query.order_by(Suspension.suspended_at.desc()).offset(offset).limit(limit).all()
    return items, total


def get_suspension_history(project_id, limit=50):
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f'Project {project_id} not found')
    return (Suspension.query.filter_by(project_id=project_id)
            .order_by(Suspension.suspended_at.desc(), Suspension.id.desc())
            .limit(limit).all())

"""
Operator overrides of automated suspension and cap decisions.

The caller must already hold an operator or admin identity; the gate runs
again here before any state is read or written. The override row, the
suspension resolution, the status flip and the cap changes commit in one
transaction. Store failures are surfaced: overrides never fail open.
"""
import logging
from datetime import datetime, timedelta
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.errors import NotFoundError, StorageUnavailable, ValidationError
from tenantguard.models.manual_override import ManualOverride, OverrideAction
from tenantguard.models.project import Project
from tenantguard.services import notifications, quotas, suspensions
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import require_operator_or_admin
from tenantguard.utils.validators import validate_override_request

logger = logging.getLogger(__name__)

RECENT_OVERRIDE_DAYS = 7


def perform_override(actor, project_id, action, reason, notes=None, new_caps=None,
                     ip_address=None, user_agent=None):
    """
    Reverse an automated decision on a project.

    Args:
        actor: The authenticated developer performing the override
        project_id: Target project
        action: unsuspend, increase_caps or both
        reason: Mandatory justification
        notes: Optional free text stored on the override and the resolved suspension
        new_caps: ``{cap_type: limit}`` for increase_caps and both

    Returns:
        The committed ``ManualOverride``.

    Raises:
        AuthorizationError: actor is not an operator or admin
        ValidationError: malformed request
        NotFoundError: unknown project
        StorageUnavailable: the transaction could not be committed
    """
    actor = require_operator_or_admin(actor, operation='manual_override')

    request_data = {'action': action, 'reason': reason, 'notes': notes, 'new_caps': new_caps}
    errors = validate_override_request(request_data)
    if errors:
        audit_logger.log_validation_failure('manual_override', errors, developer_id=actor.id,
                                            project_id=project_id, ip_address=ip_address)
        raise ValidationError(errors=errors)

    action = OverrideAction(action)
    try:
        project = db.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f'Project {project_id} not found')

        previous_status = project.status
        previous_caps = quotas.caps_snapshot(project_id)

        resolved_id = None
        if action.unsuspends:
            resolved_id = suspensions.stage_resolution(
                project, notes=f'Manual override by developer {actor.id}: {reason}')

        if action.changes_caps:
            for cap_type, limit_value in sorted(new_caps.items()):
                quotas.apply_cap_value(project_id, cap_type, limit_value)
            db.session.flush()

        override = ManualOverride(
            project_id=project_id,
            action=action.value,
            reason=reason.strip(),
            notes=notes,
            previous_status=previous_status,
            new_status=project.status,
            previous_caps=previous_caps,
            new_caps=quotas.caps_snapshot(project_id),
            performed_by=actor.id,
            ip_address=ip_address,
            performed_at=datetime.utcnow(),
        )
        db.session.add(override)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Manual override on project %s by developer %s failed: %s',
                     project_id, actor.id, e)
        raise StorageUnavailable()

    logger.warning('Developer %s performed %s override on project %s',
                   actor.id, action.value, project_id)

    if resolved_id is not None:
        audit_logger.log_unsuspension(project_id, resolved_id, resolved_by=actor.id,
                                      notes=reason, ip_address=ip_address, user_agent=user_agent)

    audit_logger.log_manual_intervention(
        project_id, actor.id, f'Manual override: {action.value}',
        details={
            'override_id': override.id,
            'reason': override.reason,
            'notes': notes,
            'previous_status': override.previous_status,
            'new_status': override.new_status,
            'previous_caps': override.previous_caps,
            'new_caps': override.new_caps,
            'resolved_suspension_id': resolved_id,
        },
        ip_address=ip_address, user_agent=user_agent,
    )

    if resolved_id is not None:
        notifications.notify_unsuspension(project, f'override-{override.id}', reason=reason)
    return override


def get_all_overrides(limit=50, offset=0):
    """Newest first. Returns (overrides, total)."""
    try:
        query = ManualOverride.query
        total = query.count()
        items = (query.order_by(ManualOverride.performed_at.desc(), ManualOverride.id.desc())
                 .offset(offset).limit(limit).all())
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to list overrides: %s', e)
        raise StorageUnavailable()
    return items, total


def get_override_history(project_id, limit=50):
    if db.session.get(Project, project_id) is None:
        raise NotFoundError(f'Project {project_id} not found')
    return (ManualOverride.query.filter_by(project_id=project_id)
            .order_by(ManualOverride.performed_at.desc(), ManualOverride.id.desc())
            .limit(limit).all())


def get_override_by_id(override_id):
    override = db.session.get(ManualOverride, override_id)
    if override is None:
        raise NotFoundError(f'Override {override_id} not found')
    return override


def get_override_statistics(now=None):
    """Totals, per-action counts and the last seven days' count."""
    now = now or datetime.utcnow()
    try:
        total = ManualOverride.query.count()
        by_action = dict(
            db.session.query(ManualOverride.action, func.count(ManualOverride.id))
            .group_by(ManualOverride.action).all()
        )
        recent_count = ManualOverride.query.filter(
            ManualOverride.performed_at >= now - timedelta(days=RECENT_OVERRIDE_DAYS)
        ).count()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to compute override statistics: %s', e)
        raise StorageUnavailable()

    return {
        'total': total,
        'by_action': {a.value: by_action.get(a.value, 0) for a in OverrideAction},
        'recent_count': recent_count,
    }

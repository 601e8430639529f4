"""
Project-facing routes: quota reads, usage recording and notification
preferences. Available to the project owner and to operators.
"""
import logging
from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import SQLAlchemyError

from tenantguard import db
from tenantguard.errors import AuthorizationError, NotFoundError, StorageUnavailable, ValidationError
from tenantguard.models.developer import Role
from tenantguard.models.notification import NOTIFICATION_TYPES
from tenantguard.models.project import Project
from tenantguard.services import notifications, quotas
from tenantguard.services.admission import admit_request
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required
from tenantguard.utils.validators import validate_usage_report

logger = logging.getLogger(__name__)

projects_bp = Blueprint('projects', __name__)


def _project_for_actor(project_id, operation):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f'Project {project_id} not found')
    actor = g.actor
    if project.owner_id != actor.id and actor.role_level < Role.OPERATOR:
        ip_address, user_agent = audit_logger.request_context()
        audit_logger.log_auth_failure(actor.id, 'not_project_owner', operation,
                                      ip_address=ip_address, user_agent=user_agent)
        raise AuthorizationError('You do not have access to this project', actor_id=actor.id)
    return project


@projects_bp.route('/<int:project_id>/quotas', methods=['GET'])
@token_required
def get_quotas(project_id):
    """Caps with today's usage and status band."""
    _project_for_actor(project_id, 'get_quotas')
    return jsonify(quotas.get_project_quota_report(project_id)), 200


@projects_bp.route('/<int:project_id>/usage', methods=['POST'])
@token_required
def record_usage(project_id):
    """Record billable usage after admission (suspension, then rate limit)."""
    _project_for_actor(project_id, 'record_usage')
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body required')

    ip_address, _ = audit_logger.request_context()
    errors = validate_usage_report(data)
    if errors:
        audit_logger.log_validation_failure('record_usage', errors, developer_id=g.actor.id,
                                            project_id=project_id, ip_address=ip_address)
        raise ValidationError(errors=errors)

    _, admission = admit_request(project_id, write=data.get('write', False),
                                 ip_address=ip_address)

    try:
        sample = quotas.record_usage(project_id, data['cap_type'], data.get('amount', 1))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Failed to record usage for project %s: %s', project_id, e)
        raise StorageUnavailable()

    response = jsonify({
        'project_id': project_id,
        'cap_type': sample.cap_type,
        'amount': sample.amount,
        'remaining_attempts': admission.remaining_attempts,
        'reset_at': admission.reset_at.isoformat(),
    })
    response.headers['X-RateLimit-Remaining'] = str(admission.remaining_attempts)
    return response, 201


@projects_bp.route('/<int:project_id>/notification-preferences', methods=['GET'])
@token_required
def get_notification_preferences(project_id):
    _project_for_actor(project_id, 'get_notification_preferences')
    prefs = notifications.get_preferences(g.actor.id, project_id)
    effective = {}
    for notification_type in NOTIFICATION_TYPES:
        enabled, channels = notifications.resolve_preference(g.actor.id, project_id, notification_type)
        effective[notification_type] = {'enabled': enabled, 'channels': channels}
    return jsonify({
        'project_id': project_id,
        'preferences': [p.to_dict() for p in prefs],
        'effective': effective,
    }), 200


@projects_bp.route('/<int:project_id>/notification-preferences', methods=['PUT'])
@token_required
def update_notification_preferences(project_id):
    """Entries apply to this project unless they set ``"global": true``."""
    _project_for_actor(project_id, 'update_notification_preferences')
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get('preferences'), list):
        raise ValidationError('preferences list is required')

    entries = []
    for entry in data['preferences']:
        if not isinstance(entry, dict):
            raise ValidationError('Each preference must be an object')
        entry = dict(entry)
        is_global = entry.pop('global', False) is True
        entry['project_id'] = None if is_global else project_id
        entries.append(entry)

    saved = notifications.set_preferences(g.actor.id, entries)
    return jsonify({'preferences': [p.to_dict() for p in saved]}), 200

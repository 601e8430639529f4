"""Forced enable/disable of developer accounts."""
from flask import jsonify, g
from sqlalchemy.exc import SQLAlchemyError
from tenantguard import db
from tenantguard.errors import AuthorizationError, NotFoundError, StorageUnavailable, ValidationError
from tenantguard.models.developer import Developer, Role
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import rate_limited, admin_action_limiter, ADMIN_ACTION_LIMIT
from tenantguard.utils.validators import validate_force_request
from . import admin_bp, json_body


@admin_bp.route('/developers/<int:developer_id>/force', methods=['POST'])
@token_required
@operator_required
@rate_limited(admin_action_limiter, *ADMIN_ACTION_LIMIT)
def force_developer_state(developer_id):
    """Enable or disable an account. Operators cannot act on peers or admins."""
    data = json_body()
    ip_address, user_agent = audit_logger.request_context()

    errors = validate_force_request(data)
    if errors:
        audit_logger.log_validation_failure('force_developer_state', errors,
                                            developer_id=g.actor.id, ip_address=ip_address)
        raise ValidationError(errors=errors)

    developer = db.session.get(Developer, developer_id)
    if developer is None:
        raise NotFoundError('Developer not found')

    if developer.id == g.actor.id:
        raise ValidationError('Cannot change your own account state')

    if developer.role_level >= g.actor.role_level and g.actor.role_level < Role.ADMIN:
        audit_logger.log_auth_failure(g.actor.id, 'insufficient_role', 'force_developer_state',
                                      ip_address=ip_address, user_agent=user_agent)
        raise AuthorizationError(actor_id=g.actor.id)

    previous = developer.is_active
    try:
        developer.is_active = data['is_active']
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise StorageUnavailable()

    audit_logger.log_manual_intervention(
        None, g.actor.id,
        f'Developer {developer_id} {"enabled" if data["is_active"] else "disabled"}',
        details={'target_developer_id': developer_id, 'previous_is_active': previous,
                 'is_active': data['is_active'], 'reason': data['reason'].strip()},
        ip_address=ip_address, user_agent=user_agent,
    )
    return jsonify(developer.to_dict()), 200

"""Quota management routes."""
from flask import jsonify, g
from tenantguard.errors import ValidationError
from tenantguard.services import quotas
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import rate_limited, admin_action_limiter, ADMIN_ACTION_LIMIT
from . import admin_bp, json_body


@admin_bp.route('/projects/<int:project_id>/quotas/<cap_type>', methods=['PUT'])
@token_required
@operator_required
@rate_limited(admin_action_limiter, *ADMIN_ACTION_LIMIT)
def update_quota(project_id, cap_type):
    """Set one cap's limit and hard/soft mode."""
    data = json_body()
    ip_address, user_agent = audit_logger.request_context()
    previous = quotas.get_effective_caps(project_id).get(cap_type)

    try:
        cap = quotas.set_project_cap(project_id, cap_type, data.get('limit'),
                                     hard_cap=data.get('hard_cap'))
    except ValidationError as e:
        audit_logger.log_validation_failure('update_quota', e.errors, developer_id=g.actor.id,
                                            project_id=project_id, ip_address=ip_address)
        raise

    audit_logger.log_manual_intervention(
        project_id, g.actor.id, f'Quota {cap_type} updated',
        details={
            'cap_type': cap_type,
            'previous_limit': previous.limit_value if previous else None,
            'new_limit': cap.limit_value,
            'hard_cap': cap.hard_cap,
        },
        ip_address=ip_address, user_agent=user_agent,
    )
    return jsonify(cap.to_dict()), 200

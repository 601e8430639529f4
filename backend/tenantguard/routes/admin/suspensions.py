"""Suspension enforcement and listing routes."""
from flask import jsonify, g
from tenantguard.services import suspensions
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import (
    rate_limited, suspension_check_limiter, SUSPENSION_CHECK_LIMIT,
)
from . import admin_bp, pagination_args


@admin_bp.route('/suspensions/check', methods=['POST'])
@token_required
@operator_required
@rate_limited(suspension_check_limiter, *SUSPENSION_CHECK_LIMIT)
def run_suspension_check():
    """Run the hard-cap enforcement job on demand."""
    result = suspensions.check_all_projects_for_suspension()

    ip_address, user_agent = audit_logger.request_context()
    audit_logger.log_manual_intervention(
        None, g.actor.id, 'Manual suspension check',
        details={'projects_checked': result['projects_checked'],
                 'suspended': result['suspended']},
        ip_address=ip_address, user_agent=user_agent,
    )
    return jsonify(result), 200


@admin_bp.route('/suspensions', methods=['GET'])
@token_required
@operator_required
def list_active_suspensions():
    limit, offset = pagination_args()
    items, total = suspensions.get_active_suspensions(limit=limit, offset=offset)
    return jsonify({
        'suspensions': [s.to_dict() for s in items],
        'total': total,
        'limit': limit,
        'offset': offset,
    }), 200


@admin_bp.route('/projects/<int:project_id>/suspensions', methods=['GET'])
@token_required
@operator_required
def suspension_history(project_id):
    limit, _ = pagination_args()
    history = suspensions.get_suspension_history(project_id, limit=limit)
    active = next((s for s in history if not s.is_resolved), None)
    return jsonify({
        'project_id': project_id,
        'active': active.to_dict() if active else None,
        'history': [s.to_dict() for s in history],
    }), 200

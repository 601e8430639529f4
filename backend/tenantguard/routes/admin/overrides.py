"""Manual override routes."""
from flask import jsonify, g
from tenantguard.services import overrides
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import rate_limited, override_limiter, OVERRIDE_LIMIT
from . import admin_bp, json_body, pagination_args


@admin_bp.route('/projects/<int:project_id>/override', methods=['POST'])
@token_required
@operator_required
@rate_limited(override_limiter, *OVERRIDE_LIMIT)
def override_project(project_id):
    """Unsuspend a project and/or raise its caps."""
    data = json_body()
    ip_address, user_agent = audit_logger.request_context()

    override = overrides.perform_override(
        g.actor, project_id,
        action=data.get('action'),
        reason=data.get('reason'),
        notes=data.get('notes'),
        new_caps=data.get('new_caps'),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return jsonify({'success': True, 'override': override.to_dict()}), 201


@admin_bp.route('/projects/<int:project_id>/overrides', methods=['GET'])
@token_required
@operator_required
def project_override_history(project_id):
    limit, _ = pagination_args()
    history = overrides.get_override_history(project_id, limit=limit)
    return jsonify({'project_id': project_id,
                    'overrides': [o.to_dict() for o in history]}), 200


@admin_bp.route('/overrides', methods=['GET'])
@token_required
@operator_required
def list_overrides():
    limit, offset = pagination_args()
    items, total = overrides.get_all_overrides(limit=limit, offset=offset)
    return jsonify({
        'overrides': [o.to_dict() for o in items],
        'total': total,
        'limit': limit,
        'offset': offset,
    }), 200


@admin_bp.route('/overrides/statistics', methods=['GET'])
@token_required
@operator_required
def override_statistics():
    return jsonify(overrides.get_override_statistics()), 200


@admin_bp.route('/overrides/<int:override_id>', methods=['GET'])
@token_required
@operator_required
def get_override(override_id):
    return jsonify(overrides.get_override_by_id(override_id).to_dict()), 200

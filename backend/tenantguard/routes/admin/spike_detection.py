"""Spike detection routes."""
from flask import current_app, jsonify, g
from tenantguard.services import spike_detection
from tenantguard.services.spike_config import describe_configuration, SPIKE_CONFIG_PRESETS
from tenantguard.utils import audit_logger
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import rate_limited, spike_check_limiter, SPIKE_CHECK_LIMIT
from . import admin_bp, json_body


@admin_bp.route('/spike-detection/check', methods=['POST'])
@token_required
@operator_required
@rate_limited(spike_check_limiter, *SPIKE_CHECK_LIMIT)
def run_spike_check():
    """Run spike detection on demand."""
    result = spike_detection.run_spike_detection()

    ip_address, user_agent = audit_logger.request_context()
    audit_logger.log_manual_intervention(
        None, g.actor.id, 'Manual spike detection run',
        details={'projects_checked': result['projects_checked'],
                 'spikes_detected': result['spikes_detected']},
        ip_address=ip_address, user_agent=user_agent,
    )

    status = 200 if result['success'] else 503
    return jsonify(result), status


@admin_bp.route('/spike-detection/config', methods=['GET'])
@token_required
@operator_required
def get_spike_config():
    config = current_app.config['SPIKE_DETECTION_CONFIG']
    return jsonify({
        'config': config._asdict(),
        'description': describe_configuration(config),
        'presets': {name: preset._asdict() for name, preset in SPIKE_CONFIG_PRESETS.items()},
    }), 200


@admin_bp.route('/projects/<int:project_id>/spike-config', methods=['GET'])
@token_required
@operator_required
def get_project_spike_config(project_id):
    return jsonify(spike_detection.get_project_spike_config(project_id)), 200


@admin_bp.route('/projects/<int:project_id>/spike-config', methods=['PUT'])
@token_required
@operator_required
def update_project_spike_config(project_id):
    """Override detection settings for one project."""
    data = json_body()
    spike_detection.update_project_spike_config(project_id, data, actor_id=g.actor.id)

    ip_address, user_agent = audit_logger.request_context()
    audit_logger.log_manual_intervention(
        project_id, g.actor.id, 'Spike detection settings updated',
        details={'changes': data}, ip_address=ip_address, user_agent=user_agent,
    )
    return jsonify(spike_detection.get_project_spike_config(project_id)), 200

"""Audit log query route."""
from datetime import datetime
from flask import request, jsonify
from tenantguard.errors import ValidationError
from tenantguard.models.audit_log import LogType, Severity
from tenantguard.utils.audit_logger import query_audit_logs
from tenantguard.utils.auth import token_required, operator_required
from . import admin_bp, pagination_args


def _int_arg(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'{name} must be an integer')


@admin_bp.route('/audit-logs', methods=['GET'])
@token_required
@operator_required
def list_audit_logs():
    """Filter by log_type, severity, project_id, developer_id and since (ISO 8601)."""
    limit, offset = pagination_args()

    log_type = request.args.get('log_type')
    if log_type and log_type not in [t.value for t in LogType]:
        raise ValidationError(f'Unknown log_type: {log_type}')

    severity = request.args.get('severity')
    if severity and severity not in [s.value for s in Severity]:
        raise ValidationError(f'Unknown severity: {severity}')

    since = request.args.get('since')
    if since:
        try:
            since = datetime.fromisoformat(since)
        except ValueError:
            raise ValidationError('since must be an ISO 8601 timestamp')

    entries, total = query_audit_logs(
        log_type=log_type,
        project_id=_int_arg('project_id'),
        developer_id=_int_arg('developer_id'),
        severity=severity,
        since=since or None,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'total': total,
        'limit': limit,
        'offset': offset,
    }), 200

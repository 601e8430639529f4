"""Abuse dashboard route."""
import logging
from flask import request, jsonify, g
from tenantguard.services.dashboard import get_dashboard, DEFAULT_TIME_RANGE
from tenantguard.utils.auth import token_required, operator_required
from tenantguard.utils.rate_limiter import rate_limited, dashboard_limiter, DASHBOARD_LIMIT
from . import admin_bp

logger = logging.getLogger(__name__)


@admin_bp.route('/abuse/dashboard', methods=['GET'])
@token_required
@operator_required
@rate_limited(dashboard_limiter, *DASHBOARD_LIMIT)
def abuse_dashboard():
    """Suspensions, rate-limit hits, cap violations and projects near their caps."""
    data = get_dashboard(request.args.get('time_range', DEFAULT_TIME_RANGE))
    logger.info('Abuse dashboard fetched by developer %s', g.actor.id)
    return jsonify({'success': True, 'data': data}), 200

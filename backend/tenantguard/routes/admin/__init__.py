"""
Operator API routes. Every endpoint authenticates, then passes the
operator gate before touching state.
"""
import logging
from flask import Blueprint, request

from tenantguard.errors import ValidationError

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

MAX_PAGE_SIZE = 100


def pagination_args(default_limit=50):
    """Read ``limit``/``offset`` query parameters, clamped to sane bounds."""
    try:
        limit = int(request.args.get('limit', default_limit))
        offset = int(request.args.get('offset', 0))
    except (TypeError, ValueError):
        raise ValidationError('limit and offset must be integers')
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body required')
    return data


# Import submodules to register routes on admin_bp
from . import spike_detection  # noqa: E402, F401
from . import suspensions      # noqa: E402, F401
from . import overrides        # noqa: E402, F401
from . import quotas           # noqa: E402, F401
from . import developers       # noqa: E402, F401
from . import audit_logs       # noqa: E402, F401
from . import dashboard        # noqa: E402, F401

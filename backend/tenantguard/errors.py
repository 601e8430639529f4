"""
Error taxonomy for abuse and admission control.

Authorization and validation failures are always surfaced to the caller.
Storage failures are absorbed where fail-open is the documented policy
(rate limiting) and surfaced everywhere else (overrides, suspensions).
"""
import logging
from datetime import datetime
from flask import jsonify

logger = logging.getLogger(__name__)


class TenantGuardError(Exception):
    """Base class for errors that map onto an HTTP response."""
    status_code = 500
    error = 'Internal error'

    def __init__(self, message=None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self):
        return {'error': self.error, 'message': self.message}


class AuthorizationError(TenantGuardError):
    """Not authenticated or insufficient role. Never silently downgraded."""
    status_code = 403
    error = 'Forbidden'

    def __init__(self, message=None, actor_id=None, status_code=403):
        super().__init__(message or 'This operation requires operator or administrator privileges')
        self.actor_id = actor_id
        self.status_code = status_code
        if status_code == 401:
            self.error = 'Unauthorized'


class ValidationError(TenantGuardError):
    status_code = 400
    error = 'Validation failed'

    def __init__(self, message=None, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])
        if not message and self.errors:
            self.message = '; '.join(self.errors)

    def to_dict(self):
        data = super().to_dict()
        if self.errors:
            data['errors'] = self.errors
        return data


class NotFoundError(TenantGuardError):
    status_code = 404
    error = 'Not found'


class RateLimitExceeded(TenantGuardError):
    """Caller should retry after ``reset_at``."""
    status_code = 429
    error = 'Rate limit exceeded'

    def __init__(self, message=None, limit=None, reset_at=None, retry_after_seconds=0):
        super().__init__(message or 'Too many requests. Please try again later.')
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after_seconds = int(retry_after_seconds or 0)

    def to_dict(self):
        data = super().to_dict()
        data['retry_after'] = self.retry_after_seconds
        if isinstance(self.reset_at, datetime):
            data['reset_at'] = self.reset_at.isoformat()
        return data


class ProjectSuspendedError(TenantGuardError):
    """Request rejected because the project is suspended or read-only."""
    status_code = 403
    error = 'Project suspended'

    def __init__(self, project_id, cap_type=None, current_value=None, limit=None, message=None):
        super().__init__(message or f'Project {project_id} is suspended')
        self.project_id = project_id
        self.cap_type = cap_type
        self.current_value = current_value
        self.limit = limit

    def to_dict(self):
        data = super().to_dict()
        data.update({
            'project_id': self.project_id,
            'cap_type': self.cap_type,
            'current_value': self.current_value,
            'limit': self.limit,
        })
        return data


class StorageUnavailable(TenantGuardError):
    status_code = 503
    error = 'Storage unavailable'

    def __init__(self, message=None):
        super().__init__(message or 'The durable store is unavailable. Please try again later.')


def register_error_handlers(app):
    """Render the taxonomy as JSON without leaking internal state."""

    @app.errorhandler(TenantGuardError)
    def handle_tenantguard_error(exc):
        response = jsonify(exc.to_dict())
        response.status_code = exc.status_code
        if isinstance(exc, RateLimitExceeded):
            response.headers['Retry-After'] = str(exc.retry_after_seconds)
        return response

    @app.errorhandler(404)
    def handle_not_found(exc):
        return jsonify({'error': 'Not found'}), 404

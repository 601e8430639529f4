"""
Authentication (JWT bearer tokens) and the operator authorization gate.
"""
import secrets
import logging
from collections import namedtuple
from datetime import datetime, timedelta
from functools import wraps
import jwt
from flask import request, g, current_app

from tenantguard import db
from tenantguard.errors import AuthorizationError
from tenantguard.models.developer import Developer, Role

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 3600

Authorized = namedtuple('Authorized', ['actor'])
Denied = namedtuple('Denied', ['actor_id', 'reason'])


def generate_token(developer_id: int, email: str, expires_in: int = TOKEN_TTL_SECONDS) -> str:
    """Issue a signed HS256 token for a developer."""
    secret = current_app.config['JWT_SECRET_KEY']
    payload = {
        'developer_id': developer_id,
        'email': email,
        'jti': secrets.token_hex(16),
        'exp': datetime.utcnow() + timedelta(seconds=expires_in),
        'iat': datetime.utcnow()
    }
    return jwt.encode(payload, secret, algorithm='HS256')


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Returns None when invalid or expired."""
    secret = current_app.config['JWT_SECRET_KEY']
    try:
        return jwt.decode(token, secret, algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def authorize(actor, minimum=Role.OPERATOR):
    """
    The single authorization gate.

    Returns ``Authorized(actor)`` when the actor is active and holds at least
    ``minimum``, otherwise ``Denied(actor_id, reason)``. Role comparison uses
    the ``Role`` ordering, never role-name strings.
    """
    if actor is None:
        return Denied(None, 'not_authenticated')
    if not actor.is_active:
        return Denied(actor.id, 'account_disabled')
    if actor.role_level < minimum:
        return Denied(actor.id, 'insufficient_role')
    return Authorized(actor)


def _deny(decision, operation):
    from tenantguard.utils import audit_logger
    ip_address, user_agent = audit_logger.request_context()
    logger.warning('Authorization denied for developer %s on %s: %s',
                   decision.actor_id, operation, decision.reason)
    audit_logger.log_auth_failure(decision.actor_id, decision.reason, operation,
                                  ip_address=ip_address, user_agent=user_agent)
    status = 401 if decision.reason == 'not_authenticated' else 403
    raise AuthorizationError(actor_id=decision.actor_id, status_code=status)


def require_operator_or_admin(actor, operation='operator_action'):
    """Return ``actor`` if they are an operator or admin, else raise.

    A denial writes an ``auth_failure`` audit entry and nothing else.
    """
    decision = authorize(actor, Role.OPERATOR)
    if isinstance(decision, Denied):
        _deny(decision, operation)
    return decision.actor


def require_admin(actor, operation='admin_action'):
    decision = authorize(actor, Role.ADMIN)
    if isinstance(decision, Denied):
        _deny(decision, operation)
    return decision.actor


def token_required(f):
    """Decorator to require a valid bearer token. Sets ``g.actor``."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        auth_header = request.headers.get('Authorization')
        if not auth_header:
            raise AuthorizationError('Missing authorization header', status_code=401)

        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            raise AuthorizationError('Invalid authorization header format', status_code=401)

        payload = decode_token(parts[1])
        if not payload:
            raise AuthorizationError('Invalid or expired token', status_code=401)

        developer = db.session.get(Developer, payload.get('developer_id'))
        if not developer or not developer.is_active:
            raise AuthorizationError('Account is deactivated', status_code=401)

        g.actor = developer
        g.token_jti = payload.get('jti')
        return f(*args, **kwargs)
    return wrapper


def operator_required(f):
    """Decorator running the authorization gate for the current endpoint."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        require_operator_or_admin(getattr(g, 'actor', None), operation=request.endpoint or f.__name__)
        return f(*args, **kwargs)
    return wrapper


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        require_admin(getattr(g, 'actor', None), operation=request.endpoint or f.__name__)
        return f(*args, **kwargs)
    return wrapper

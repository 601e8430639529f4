"""
Request admission: suspension state first, then the rate limiter.

Suspension is authoritative; a suspended or read-only project is rejected
even when the limiter would allow the request.
"""
import logging

from tenantguard.services.suspensions import check_project_access
from tenantguard.utils import audit_logger
from tenantguard.utils.rate_limiter import RateLimiter, create_rate_limit_error, org_identifier

logger = logging.getLogger(__name__)

USAGE_LIMIT = (600, 60)

usage_limiter = RateLimiter(scope='project_usage')


def admit_request(project_id, write=False, limiter=usage_limiter, limit=None, ip_address=None):
    """
    Decide whether a project may serve a request.

    Returns:
        (project, RateLimitResult)

    Raises:
        NotFoundError: unknown project
        ProjectSuspendedError: suspended, terminal, or a write on a read-only project
        RateLimitExceeded: the project's short-window cap is used up
    """
    project = check_project_access(project_id, write=write)

    max_requests, window_seconds = limit or USAGE_LIMIT
    identifier = org_identifier(project_id)
    result = limiter.check(identifier, max_requests, window_seconds)
    if not result.allowed:
        logger.info('Project %s rate limited on %s', project_id, limiter.scope)
        audit_logger.log_rate_limit_exceeded(f'{identifier.type}:{identifier.value}',
                                             limiter.scope, max_requests,
                                             ip_address=ip_address)
        raise create_rate_limit_error(identifier, max_requests, window_seconds,
                                      reset_at=result.reset_at, clock=limiter.clock)
    return project, result

from .audit_logger import log as audit_log, AuditResult
from .auth import token_required, operator_required, require_operator_or_admin
from .rate_limiter import RateLimiter, extract_client_ip, rate_limited

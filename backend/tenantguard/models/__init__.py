from .developer import Developer, Role
from .project import Project
from .quota import ProjectCap, CapType
from .usage_sample import UsageSample
from .suspension import Suspension
from .audit_log import AuditLogEntry, LogType, Severity
from .manual_override import ManualOverride, OverrideAction
from .notification import NotificationPreference, Notification
from .rate_limit_record import RateLimitRecord
from .spike_config import ProjectSpikeConfig

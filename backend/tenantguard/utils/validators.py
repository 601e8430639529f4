"""
Input validation for overrides, quota updates, usage reports and
notification preferences.
"""
from tenantguard.models.quota import CAP_TYPES, MIN_CAP_VALUE, MAX_CAP_VALUE
from tenantguard.models.manual_override import OverrideAction
from tenantguard.models.notification import NOTIFICATION_TYPES, NOTIFICATION_CHANNELS

MAX_REASON_LENGTH = 1000
MAX_NOTES_LENGTH = 5000
MAX_USAGE_AMOUNT = 1_000_000


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_cap_value(cap_type, limit_value) -> list:
    errors = []
    if cap_type not in CAP_TYPES:
        errors.append(f'cap_type must be one of: {", ".join(CAP_TYPES)}')
    if not _is_int(limit_value):
        errors.append(f'{cap_type} limit must be an integer')
    elif limit_value < MIN_CAP_VALUE or limit_value > MAX_CAP_VALUE:
        errors.append(f'{cap_type} limit must be between {MIN_CAP_VALUE} and {MAX_CAP_VALUE}')
    return errors


def validate_cap_update(cap_type, limit_value, hard_cap=None) -> list:
    """Validate a single quota update. Returns list of error strings (empty = valid)."""
    errors = validate_cap_value(cap_type, limit_value)
    if hard_cap is not None and not isinstance(hard_cap, bool):
        errors.append('hard_cap must be a boolean')
    return errors


def validate_override_request(data: dict) -> list:
    """Validate manual override input. Returns list of error strings (empty = valid)."""
    errors = []

    action = data.get('action')
    valid_actions = [a.value for a in OverrideAction]
    if action not in valid_actions:
        errors.append(f'action must be one of: {", ".join(valid_actions)}')
        return errors

    reason = data.get('reason')
    if not isinstance(reason, str) or not reason.strip():
        errors.append('reason is required')
    elif len(reason) > MAX_REASON_LENGTH:
        errors.append(f'reason must be {MAX_REASON_LENGTH} characters or fewer')

    notes = data.get('notes')
    if notes is not None:
        if not isinstance(notes, str):
            errors.append('notes must be a string')
        elif len(notes) > MAX_NOTES_LENGTH:
            errors.append(f'notes must be {MAX_NOTES_LENGTH} characters or fewer')

    new_caps = data.get('new_caps')
    if OverrideAction(action).changes_caps:
        if not isinstance(new_caps, dict) or not new_caps:
            errors.append(f'new_caps is required for action {action}')
        else:
            for cap_type, value in new_caps.items():
                errors.extend(validate_cap_value(cap_type, value))
    elif new_caps:
        errors.append('new_caps is only allowed with increase_caps or both')

    return errors


def validate_usage_report(data: dict) -> list:
    """Validate a usage recording request."""
    errors = []
    if data.get('cap_type') not in CAP_TYPES:
        errors.append(f'cap_type must be one of: {", ".join(CAP_TYPES)}')

    amount = data.get('amount', 1)
    if not _is_int(amount):
        errors.append('amount must be an integer')
    elif amount < 1 or amount > MAX_USAGE_AMOUNT:
        errors.append(f'amount must be between 1 and {MAX_USAGE_AMOUNT}')

    write = data.get('write', False)
    if not isinstance(write, bool):
        errors.append('write must be a boolean')
    return errors


def validate_notification_preference(data: dict) -> list:
    """Validate one notification preference entry."""
    errors = []
    if data.get('notification_type') not in NOTIFICATION_TYPES:
        errors.append(f'notification_type must be one of: {", ".join(NOTIFICATION_TYPES)}')

    enabled = data.get('enabled', True)
    if not isinstance(enabled, bool):
        errors.append('enabled must be a boolean')

    channels = data.get('channels')
    if channels is not None:
        if not isinstance(channels, list):
            errors.append('channels must be a list')
        else:
            unknown = [c for c in channels if c not in NOTIFICATION_CHANNELS]
            if unknown:
                errors.append(f'Unknown channels: {", ".join(map(str, unknown))}')

    project_id = data.get('project_id')
    if project_id is not None and not _is_int(project_id):
        errors.append('project_id must be an integer')
    return errors


def validate_force_request(data: dict) -> list:
    """Validate a forced enable/disable of a developer account."""
    errors = []
    if not isinstance(data.get('is_active'), bool):
        errors.append('is_active must be a boolean')
    reason = data.get('reason')
    if not isinstance(reason, str) or not reason.strip():
        errors.append('reason is required')
    elif len(reason) > MAX_REASON_LENGTH:
        errors.append(f'reason must be {MAX_REASON_LENGTH} characters or fewer')
    return errors

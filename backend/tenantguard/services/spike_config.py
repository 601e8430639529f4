"""
Spike detection configuration: tier thresholds, windows, presets and
validation.

A configuration is an immutable ``SpikeDetectionConfig``. Per-project rows
(``ProjectSpikeConfig``) are merged on top of the application defaults.
"""
import os
import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

SpikeDetectionConfig = namedtuple('SpikeDetectionConfig', [
    'warning_multiplier',
    'suspend_multiplier',
    'critical_multiplier',
    'window_seconds',
    'baseline_periods',
    'min_usage',
    'enabled',
])

SEVERITY_NONE = 'none'
SEVERITY_WARNING = 'warning'
SEVERITY_SEVERE = 'severe'
SEVERITY_CRITICAL = 'critical'

MIN_WINDOW_SECONDS = 60
MAX_WINDOW_SECONDS = 24 * 60 * 60
MAX_MULTIPLIER = 100.0
MIN_SUSPEND_MULTIPLIER = 2.0

DEFAULT_SPIKE_CONFIG = SpikeDetectionConfig(
    warning_multiplier=2.0,
    suspend_multiplier=5.0,
    critical_multiplier=10.0,
    window_seconds=3600,
    baseline_periods=24,
    min_usage=10,
    enabled=True,
)

AGGRESSIVE_SPIKE_CONFIG = DEFAULT_SPIKE_CONFIG._replace(
    warning_multiplier=2.0,
    suspend_multiplier=3.0,
    critical_multiplier=5.0,
    window_seconds=1800,
    baseline_periods=24,
    min_usage=5,
)

CONSERVATIVE_SPIKE_CONFIG = DEFAULT_SPIKE_CONFIG._replace(
    warning_multiplier=5.0,
    suspend_multiplier=10.0,
    critical_multiplier=20.0,
    window_seconds=3600,
    baseline_periods=48,
    min_usage=20,
)

SPIKE_CONFIG_PRESETS = {
    'default': DEFAULT_SPIKE_CONFIG,
    'aggressive': AGGRESSIVE_SPIKE_CONFIG,
    'conservative': CONSERVATIVE_SPIKE_CONFIG,
}

_MULTIPLIER_FIELDS = ('warning_multiplier', 'suspend_multiplier', 'critical_multiplier')


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_spike_config(values: dict) -> list:
    """Validate a (possibly partial) configuration. Returns list of error strings (empty = valid)."""
    errors = []

    for field in _MULTIPLIER_FIELDS:
        value = values.get(field)
        if value is None:
            continue
        if not _is_number(value):
            errors.append(f'{field} must be a number')
        elif value < 1.0:
            errors.append(f'{field} must be at least 1.0')
        elif value > MAX_MULTIPLIER:
            errors.append(f'{field} must not exceed {MAX_MULTIPLIER}')

    # Tiers must escalate
    tiers = [values.get(f) for f in _MULTIPLIER_FIELDS]
    present = [t for t in tiers if _is_number(t)]
    if len(present) > 1 and any(a >= b for a, b in zip(present, present[1:])):
        errors.append('Multipliers must be strictly ascending: warning < suspend < critical')

    window = values.get('window_seconds')
    if window is not None:
        if not _is_number(window) or int(window) != window:
            errors.append('window_seconds must be an integer')
        elif window < MIN_WINDOW_SECONDS:
            errors.append('window_seconds must be at least 60 (1 minute)')
        elif window > MAX_WINDOW_SECONDS:
            errors.append('window_seconds must not exceed 86400 (24 hours)')

    periods = values.get('baseline_periods')
    if periods is not None:
        if not _is_number(periods) or int(periods) != periods:
            errors.append('baseline_periods must be an integer')
        elif periods < 1:
            errors.append('baseline_periods must be at least 1')

    min_usage = values.get('min_usage')
    if min_usage is not None:
        if not _is_number(min_usage) or int(min_usage) != min_usage:
            errors.append('min_usage must be an integer')
        elif min_usage < 0:
            errors.append('min_usage must be non-negative')

    enabled = values.get('enabled')
    if enabled is not None and not isinstance(enabled, bool):
        errors.append('enabled must be a boolean')

    return errors


def is_safe_config(config) -> bool:
    """A valid configuration that never suspends automatically below 2x."""
    values = config._asdict() if isinstance(config, SpikeDetectionConfig) else dict(config)
    suspend = values.get('suspend_multiplier')
    if _is_number(suspend) and suspend < MIN_SUSPEND_MULTIPLIER:
        return False
    return not validate_spike_config(values)


def merge_config(base, overrides=None):
    """Return ``base`` with the non-null entries of ``overrides`` applied."""
    if not overrides:
        return base
    updates = {k: v for k, v in overrides.items()
               if k in SpikeDetectionConfig._fields and v is not None}
    return base._replace(**updates)


def get_preset(name):
    try:
        return SPIKE_CONFIG_PRESETS[name]
    except KeyError:
        raise ValueError(f'Unknown spike detection preset: {name}')


def determine_severity(multiplier, config):
    """Map a spike multiplier onto the ordered tiers."""
    if multiplier >= config.critical_multiplier:
        return SEVERITY_CRITICAL
    if multiplier >= config.suspend_multiplier:
        return SEVERITY_SEVERE
    if multiplier >= config.warning_multiplier:
        return SEVERITY_WARNING
    return SEVERITY_NONE


def describe_configuration(config) -> str:
    window_minutes = round(config.window_seconds / 60)
    baseline_hours = round(config.window_seconds * config.baseline_periods / 3600)
    return (
        f'Warn at {config.warning_multiplier}x, suspend hard caps at '
        f'{config.suspend_multiplier}x, critical at {config.critical_multiplier}x '
        f'of the average within a {window_minutes}-minute window '
        f'(based on a {baseline_hours}-hour baseline, minimum usage {config.min_usage}). '
        f'Enabled: {config.enabled}'
    )


def load_spike_config_from_env():
    """Build the application default from ``SPIKE_*`` environment variables.

    Raises:
        RuntimeError: if the resulting configuration is invalid
    """
    preset = get_preset(os.getenv('SPIKE_PRESET', 'default'))
    env_fields = {
        'warning_multiplier': ('SPIKE_WARNING_MULTIPLIER', float),
        'suspend_multiplier': ('SPIKE_SUSPEND_MULTIPLIER', float),
        'critical_multiplier': ('SPIKE_CRITICAL_MULTIPLIER', float),
        'window_seconds': ('SPIKE_WINDOW_SECONDS', int),
        'baseline_periods': ('SPIKE_BASELINE_PERIODS', int),
        'min_usage': ('SPIKE_MIN_USAGE', int),
    }
    overrides = {}
    for field, (env_name, cast) in env_fields.items():
        raw = os.getenv(env_name)
        if raw in (None, ''):
            continue
        try:
            overrides[field] = cast(raw)
        except ValueError:
            raise RuntimeError(f'{env_name} must be a {cast.__name__}, got {raw!r}')

    enabled = os.getenv('SPIKE_DETECTION_ENABLED')
    if enabled is not None:
        overrides['enabled'] = enabled.lower() == 'true'

    config = merge_config(preset, overrides)
    errors = validate_spike_config(config._asdict())
    if errors:
        raise RuntimeError('Invalid spike detection configuration: ' + '; '.join(errors))
    if not is_safe_config(config):
        raise RuntimeError('Spike detection configuration would suspend below 2x')
    logger.info('Spike detection: %s', describe_configuration(config))
    return config

"""
Scheduler entry points, exposed as ``flask <command>``.
"""
import json
import click


def register_cli_commands(app):

    @app.cli.command('run-spike-detection')
    def run_spike_detection():
        """Run one spike detection pass over all projects."""
        from tenantguard.services.spike_detection import run_spike_detection as run
        result = run()
        print(f"Checked {result['projects_checked']} project(s): "
              f"{result['spikes_detected']} spike(s), "
              f"{result['actions_taken']['warnings']} warning(s), "
              f"{result['actions_taken']['suspensions']} suspension(s).")
        if result['errors']:
            print(f"Skipped {len(result['errors'])} project(s) on storage errors.")
        if not result['success']:
            raise SystemExit(1)

    @app.cli.command('check-suspensions')
    def check_suspensions():
        """Suspend projects whose daily usage reached a hard cap."""
        from tenantguard.services.suspensions import check_all_projects_for_suspension
        result = check_all_projects_for_suspension()
        print(f"Checked {result['projects_checked']} project(s), "
              f"suspended {len(result['suspended'])}.")

    @app.cli.command('recheck-suspensions')
    def recheck_suspensions():
        """Restore suspended projects whose usage is back under the limit."""
        from tenantguard.services.suspensions import recheck_suspensions as recheck
        result = recheck()
        print(f"Re-checked {result['checked']} suspension(s), resolved {len(result['resolved'])}.")

    @app.cli.command('cleanup-rate-limits')
    @click.option('--grace-seconds', default=0, type=int,
                  help='Keep counters that expired less than this long ago.')
    def cleanup_rate_limits(grace_seconds):
        """Remove expired rate limit counters."""
        from tenantguard.models.rate_limit_record import RateLimitRecord
        count = RateLimitRecord.cleanup_expired(grace_seconds=grace_seconds)
        print(f'Removed {count} expired rate limit counter(s).')

    @app.cli.command('show-spike-config')
    def show_spike_config():
        """Print the effective spike detection defaults."""
        from tenantguard.services.spike_config import describe_configuration
        config = app.config['SPIKE_DETECTION_CONFIG']
        print(describe_configuration(config))
        print(json.dumps(config._asdict(), indent=2))

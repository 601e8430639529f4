"""create abuse control tables

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9a1c2b7d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('developers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='developer'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_developers_email', 'developers', ['email'], unique=True)

    op.create_table('projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('data_access', sa.String(20), nullable=False, server_default='full'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['developers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])
    op.create_index('ix_projects_status', 'projects', ['status'])

    op.create_table('project_caps',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('cap_type', sa.String(50), nullable=False),
        sa.Column('limit_value', sa.Integer(), nullable=False),
        sa.Column('hard_cap', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'cap_type', name='uq_project_caps_project_cap')
    )
    op.create_index('ix_project_caps_project_id', 'project_caps', ['project_id'])

    op.create_table('usage_samples',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('cap_type', sa.String(50), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_usage_samples_project_cap_ts', 'usage_samples',
                    ['project_id', 'cap_type', 'occurred_at'])

    op.create_table('suspensions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.JSON(), nullable=False),
        sa.Column('cap_exceeded', sa.String(50), nullable=False),
        sa.Column('suspension_type', sa.String(20), nullable=False, server_default='automatic'),
        sa.Column('suspended_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_suspensions_project_id', 'suspensions', ['project_id'])
    # At most one unresolved suspension per project
    op.create_index(
        'uq_suspensions_project_unresolved', 'suspensions', ['project_id'],
        unique=True,
        postgresql_where=sa.text('resolved_at IS NULL'),
        sqlite_where=sa.text('resolved_at IS NULL'),
    )

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('log_type', sa.String(40), nullable=False),
        sa.Column('severity', sa.String(10), nullable=False, server_default='info'),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('developer_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(255), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_log_type', 'audit_logs', ['log_type'])
    op.create_index('ix_audit_logs_project_id', 'audit_logs', ['project_id'])
    op.create_index('ix_audit_logs_developer_id', 'audit_logs', ['developer_id'])
    op.create_index('ix_audit_logs_occurred_at', 'audit_logs', ['occurred_at'])

    op.create_table('manual_overrides',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('previous_status', sa.String(20), nullable=False),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('previous_caps', sa.JSON(), nullable=False),
        sa.Column('new_caps', sa.JSON(), nullable=False),
        sa.Column('performed_by', sa.Integer(), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('performed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.ForeignKeyConstraint(['performed_by'], ['developers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_manual_overrides_project_id', 'manual_overrides', ['project_id'])
    op.create_index('ix_manual_overrides_performed_at', 'manual_overrides', ['performed_at'])

    op.create_table('notification_preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('developer_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('notification_type', sa.String(40), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('channels', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['developer_id'], ['developers.id']),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('developer_id', 'project_id', 'notification_type',
                            name='uq_notification_preferences_scope')
    )
    op.create_index('ix_notification_preferences_developer_id', 'notification_preferences',
                    ['developer_id'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('developer_id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('notification_type', sa.String(40), nullable=False),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=False),
        sa.Column('dedupe_key', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['developer_id'], ['developers.id']),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('developer_id', 'dedupe_key', name='uq_notifications_dedupe')
    )
    op.create_index('ix_notifications_developer_id', 'notifications', ['developer_id'])
    op.create_index('ix_notifications_project_id', 'notifications', ['project_id'])

    op.create_table('rate_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identifier_type', sa.String(10), nullable=False),
        sa.Column('identifier_value', sa.String(255), nullable=False),
        sa.Column('scope', sa.String(100), nullable=False, server_default='default'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('window_start', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier_type', 'identifier_value', 'scope',
                            name='uq_rate_limits_identifier_scope')
    )
    op.create_index('ix_rate_limits_expires_at', 'rate_limits', ['expires_at'])

    op.create_table('spike_detection_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('warning_multiplier', sa.Float(), nullable=True),
        sa.Column('suspend_multiplier', sa.Float(), nullable=True),
        sa.Column('critical_multiplier', sa.Float(), nullable=True),
        sa.Column('window_seconds', sa.Integer(), nullable=True),
        sa.Column('baseline_periods', sa.Integer(), nullable=True),
        sa.Column('min_usage', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id')
    )


def downgrade():
    op.drop_table('spike_detection_configs')
    op.drop_index('ix_rate_limits_expires_at', table_name='rate_limits')
    op.drop_table('rate_limits')
    op.drop_index('ix_notifications_project_id', table_name='notifications')
    op.drop_index('ix_notifications_developer_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_notification_preferences_developer_id', table_name='notification_preferences')
    op.drop_table('notification_preferences')
    op.drop_index('ix_manual_overrides_performed_at', table_name='manual_overrides')
    op.drop_index('ix_manual_overrides_project_id', table_name='manual_overrides')
    op.drop_table('manual_overrides')
    op.drop_index('ix_audit_logs_occurred_at', table_name='audit_logs')
    op.drop_index('ix_audit_logs_developer_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_project_id', table_name='audit_logs')
    op.drop_index('ix_audit_logs_log_type', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('uq_suspensions_project_unresolved', table_name='suspensions')
    op.drop_index('ix_suspensions_project_id', table_name='suspensions')
    op.drop_table('suspensions')
    op.drop_index('ix_usage_samples_project_cap_ts', table_name='usage_samples')
    op.drop_table('usage_samples')
    op.drop_index('ix_project_caps_project_id', table_name='project_caps')
    op.drop_table('project_caps')
    op.drop_index('ix_projects_status', table_name='projects')
    op.drop_index('ix_projects_owner_id', table_name='projects')
    op.drop_table('projects')
    op.drop_index('ix_developers_email', table_name='developers')
    op.drop_table('developers')

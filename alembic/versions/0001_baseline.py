"""Baseline migration - tenancy, membership, session, credential and audit tables

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates every table owned by tenant-guard. Timestamps are timezone-aware;
free-form maps are JSON.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLES = "'field_worker', 'supervisor', 'admin', 'super_admin'"
INVITATION_STATUSES = "'pending', 'accepted', 'expired', 'revoked'"
AUDIT_EVENT_TYPES = (
    "'login', 'login_failed', 'logout', 'password_change', 'mfa_enabled', 'mfa_disabled', "
    "'account_locked', 'account_unlocked', 'role_change', 'profile_updated', "
    "'account_deactivated', 'user_deleted', 'invitation_sent', 'invitation_resent', "
    "'invitation_accepted', 'invitation_revoked', 'organization_created', "
    "'organization_updated', 'access_denied', 'security_incident', 'system_maintenance'"
)


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create tenant-guard tables."""

    # ==========================================================================
    # Organizations and identities
    # ==========================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(50), nullable=False, unique=True),
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default=sa.text("'basic'")),
        sa.Column('mfa_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_users', sa.Integer(), nullable=False, server_default=sa.text('100')),
        sa.Column('settings', sa.JSON(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
        sa.CheckConstraint('max_users > 0', name='ck_organizations_max_users_positive'),
    )

    op.create_table(
        'identities',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('attributes', sa.JSON(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
    )

    # ==========================================================================
    # Memberships (one per identity)
    # ==========================================================================
    op.create_table(
        'memberships',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('region_id', sa.Uuid(), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('preferences', sa.JSON(), nullable=False),
        sa.Column('device_info', sa.JSON(), nullable=False),
        _ts('last_login_at', nullable=True),
        _ts('last_activity_at', nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
        sa.UniqueConstraint('id', 'organization_id', name='uq_memberships_id_org'),
        sa.CheckConstraint(f'role IN ({ROLES})', name='ck_memberships_role'),
    )
    op.create_index('ix_memberships_org_active', 'memberships', ['organization_id', 'is_active'])
    op.create_index('ix_memberships_org_email', 'memberships', ['organization_id', 'email'])

    # ==========================================================================
    # Invitations
    # ==========================================================================
    op.create_table(
        'invitations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('region_id', sa.Uuid(), nullable=True),
        sa.Column('token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False),
        _ts('expires_at'),
        sa.Column('invited_by_id', sa.Uuid(), sa.ForeignKey('memberships.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        _ts('accepted_at', nullable=True),
        sa.Column('accepted_by_id', sa.Uuid(), nullable=True),
        _ts('revoked_at', nullable=True),
        sa.Column('revoked_by_id', sa.Uuid(), nullable=True),
        sa.Column('revoke_reason', sa.String(500), nullable=True),
        sa.Column('resend_count', sa.Integer(), nullable=False),
        _ts('last_resent_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.CheckConstraint(f'role IN ({ROLES})', name='ck_invitations_role'),
        sa.CheckConstraint(f'status IN ({INVITATION_STATUSES})', name='ck_invitations_status'),
    )
    op.create_index(
        'uq_invitations_pending_org_email',
        'invitations',
        ['organization_id', 'email'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index('ix_invitations_status_expires', 'invitations', ['status', 'expires_at'])

    # ==========================================================================
    # Sessions and credentials
    # ==========================================================================
    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('memberships.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', sa.Uuid(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('device_info', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _ts('expires_at'),
        _ts('last_activity_at'),
        _ts('created_at'),
        _ts('ended_at', nullable=True),
        sa.Column('end_reason', sa.String(50), nullable=True),
    )
    op.create_index('ix_user_sessions_user_active', 'user_sessions', ['user_id', 'is_active'])
    op.create_index('ix_user_sessions_org', 'user_sessions', ['organization_id'])
    op.create_index('ix_user_sessions_expires', 'user_sessions', ['expires_at'])

    op.create_table(
        'login_attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('attempt_type', sa.String(20), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        _ts('cleared_at', nullable=True),
        _ts('attempted_at'),
    )
    op.create_index('ix_login_attempts_email_time', 'login_attempts', ['email', 'attempted_at'])

    op.create_table(
        'password_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('memberships.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', sa.Uuid(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        _ts('created_at'),
    )
    op.create_index('ix_password_history_user_created', 'password_history', ['user_id', 'created_at'])

    op.create_table(
        'mfa_settings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('memberships.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('organization_id', sa.Uuid(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('totp_enabled', sa.Boolean(), nullable=False),
        sa.Column('totp_secret', sa.Text(), nullable=True),
        sa.Column('sms_enabled', sa.Boolean(), nullable=False),
        sa.Column('backup_codes', sa.JSON(), nullable=False),
        sa.Column('recovery_codes_used', sa.Integer(), nullable=False),
        _ts('last_used_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
    )

    # ==========================================================================
    # Audit log (no foreign keys: events outlive their subjects)
    # ==========================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('organization_id', sa.Uuid(), nullable=True),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('resource', sa.String(100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('session_id', sa.Uuid(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_details', sa.Text(), nullable=True),
        _ts('timestamp'),
        sa.CheckConstraint(f'event_type IN ({AUDIT_EVENT_TYPES})', name='ck_audit_events_event_type'),
    )
    op.create_index('ix_audit_events_org_time', 'audit_events', ['organization_id', 'timestamp'])
    op.create_index('ix_audit_events_org_type_time', 'audit_events', ['organization_id', 'event_type', 'timestamp'])
    op.create_index('ix_audit_events_user_time', 'audit_events', ['user_id', 'timestamp'])


def downgrade() -> None:
    """Drop tenant-guard tables."""
    op.drop_table('audit_events')
    op.drop_table('mfa_settings')
    op.drop_table('password_history')
    op.drop_table('login_attempts')
    op.drop_table('user_sessions')
    op.drop_index('uq_invitations_pending_org_email', table_name='invitations')
    op.drop_table('invitations')
    op.drop_table('memberships')
    op.drop_table('identities')
    op.drop_table('organizations')

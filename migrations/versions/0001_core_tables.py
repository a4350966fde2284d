"""create entitlement, promo, report and session tables

Revision ID: 0001
Revises:
Create Date: 2026-02-02 00:00:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def upgrade() -> None:
    # entitlements: one authoritative row per user
    op.create_table(
        'entitlements',
        _uuid_pk(),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('end_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('weekly_pro_sessions_remaining', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weekly_sessions_reset_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('redemption_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('user_id', name='uq_entitlements_user'),
        sa.CheckConstraint(
            "status IN ('free', 'trial', 'pro_monthly', 'pro_season', 'promo')",
            name='ck_entitlements_status',
        ),
        sa.CheckConstraint('weekly_pro_sessions_remaining >= 0', name='ck_entitlements_remaining_nonneg'),
    )
    op.create_index('ix_entitlements_user_created', 'entitlements', ['user_id', sa.text('created_at DESC')])

    # entitlement_history: append-only audit copy, filled by trigger
    op.create_table(
        'entitlement_history',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('entitlement_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('end_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('weekly_pro_sessions_remaining', sa.Integer(), nullable=False),
        sa.Column('weekly_sessions_reset_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('redemption_attempts', sa.Integer(), nullable=False),
        sa.Column('recorded_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('clock_timestamp()'), nullable=False),
    )
    op.create_index('ix_entitlement_history_user', 'entitlement_history', ['user_id', 'recorded_at'])

    # promo_redemptions: at most one per (user, code)
    op.create_table(
        'promo_redemptions',
        _uuid_pk(),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('user_id', 'code', name='uq_promo_redemptions_user_code'),
        sa.CheckConstraint("status IN ('active', 'expired', 'exhausted')", name='ck_promo_redemptions_status'),
    )

    # weekly_report_requests
    op.create_table(
        'weekly_report_requests',
        _uuid_pk(),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('match_day', sa.String(length=16), nullable=False),
        sa.Column('training_days', sa.SmallInteger(), nullable=False),
        sa.Column('legs_status', sa.String(length=16), nullable=False),
        sa.Column('tier', sa.String(length=8), nullable=False, server_default='free'),
        sa.Column('teammate_code', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint("tier IN ('free', 'paid')", name='ck_weekly_report_requests_tier'),
        sa.CheckConstraint('training_days BETWEEN 0 AND 7', name='ck_weekly_report_requests_training_days'),
    )
    op.create_index('ix_weekly_report_email_created', 'weekly_report_requests', ['email', sa.text('created_at DESC')])

    # weekly_report_followups: rows picked up by the mailer
    op.create_table(
        'weekly_report_followups',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('send_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('report_request_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('weekly_report_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # plans / sessions / session_events
    op.create_table(
        'plans',
        _uuid_pk(),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('focus', sa.String(length=32), nullable=False, server_default='late_game'),
        sa.Column('sessions_per_week', sa.SmallInteger(), nullable=False, server_default='2'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_plans_user_created', 'plans', ['user_id', 'created_at'])

    op.create_table(
        'sessions',
        _uuid_pk(),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scheduled_for', sa.Date(), nullable=True),
        sa.Column('duration_minutes', sa.SmallInteger(), nullable=False, server_default='8'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('moves', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('scheduled', 'completed')", name='ck_sessions_status'),
    )
    op.create_index('ix_sessions_plan', 'sessions', ['plan_id'])

    op.create_table(
        'session_events',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('session_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # report_events: analytics, user_id null for anonymous report pages
    op.create_table(
        'report_events',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Text(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_props', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('report_events')
    op.drop_table('session_events')
    op.drop_index('ix_sessions_plan', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('ix_plans_user_created', table_name='plans')
    op.drop_table('plans')
    op.drop_table('weekly_report_followups')
    op.drop_index('ix_weekly_report_email_created', table_name='weekly_report_requests')
    op.drop_table('weekly_report_requests')
    op.drop_table('promo_redemptions')
    op.drop_index('ix_entitlement_history_user', table_name='entitlement_history')
    op.drop_table('entitlement_history')
    op.drop_index('ix_entitlements_user_created', table_name='entitlements')
    op.drop_table('entitlements')

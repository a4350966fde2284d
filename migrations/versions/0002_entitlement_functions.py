"""add plpgsql functions and triggers for entitlements

Revision ID: 0002
Revises: 0001
Create Date: 2026-02-02 00:00:00

"""
from __future__ import annotations

from alembic import op


revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Weekly promo counter: reset when stale, then take one unit, in a single
    # UPDATE. Concurrent callers serialize on the row lock and the WHERE clause
    # is re-evaluated against the committed row, so the count cannot go below 0.
    op.execute(
        r'''
        CREATE OR REPLACE FUNCTION consume_promo_session(
            p_entitlement_id uuid,
            p_week_start timestamptz,
            p_quota integer,
            p_now timestamptz
        )
        RETURNS integer LANGUAGE plpgsql AS $$
        DECLARE
            v_remaining integer;
        BEGIN
            UPDATE entitlements e
            SET weekly_pro_sessions_remaining =
                    CASE WHEN e.weekly_sessions_reset_at IS NULL OR e.weekly_sessions_reset_at < p_week_start
                         THEN p_quota
                         ELSE e.weekly_pro_sessions_remaining
                    END - 1,
                weekly_sessions_reset_at =
                    CASE WHEN e.weekly_sessions_reset_at IS NULL OR e.weekly_sessions_reset_at < p_week_start
                         THEN p_now
                         ELSE e.weekly_sessions_reset_at
                    END
            WHERE e.id = p_entitlement_id
              AND e.status = 'promo'
              AND (
                    ((e.weekly_sessions_reset_at IS NULL OR e.weekly_sessions_reset_at < p_week_start) AND p_quota > 0)
                 OR e.weekly_pro_sessions_remaining > 0
              )
            RETURNING e.weekly_pro_sessions_remaining INTO v_remaining;

            RETURN v_remaining;
        END;
        $$;
        '''
    )

    op.execute(
        r'''
        CREATE OR REPLACE FUNCTION entitlements_history_fn()
        RETURNS trigger LANGUAGE plpgsql AS $$
        BEGIN
            INSERT INTO entitlement_history (
                entitlement_id, user_id, status, start_at, end_at, source,
                weekly_pro_sessions_remaining, weekly_sessions_reset_at, redemption_attempts
            )
            VALUES (
                NEW.id, NEW.user_id, NEW.status, NEW.start_at, NEW.end_at, NEW.source,
                NEW.weekly_pro_sessions_remaining, NEW.weekly_sessions_reset_at, NEW.redemption_attempts
            );
            RETURN NEW;
        END;
        $$;

        DROP TRIGGER IF EXISTS trg_entitlements_history ON entitlements;
        CREATE TRIGGER trg_entitlements_history
        AFTER INSERT OR UPDATE ON entitlements
        FOR EACH ROW
        EXECUTE FUNCTION entitlements_history_fn();
        '''
    )

    op.execute(
        r'''
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS trigger LANGUAGE plpgsql AS $$
        BEGIN
            NEW.updated_at := now();
            RETURN NEW;
        END;
        $$;

        DROP TRIGGER IF EXISTS trg_entitlements_updated_at ON entitlements;
        CREATE TRIGGER trg_entitlements_updated_at
        BEFORE UPDATE ON entitlements
        FOR EACH ROW
        EXECUTE FUNCTION set_updated_at();

        DROP TRIGGER IF EXISTS trg_plans_updated_at ON plans;
        CREATE TRIGGER trg_plans_updated_at
        BEFORE UPDATE ON plans
        FOR EACH ROW
        EXECUTE FUNCTION set_updated_at();
        '''
    )


def downgrade() -> None:
    op.execute('DROP TRIGGER IF EXISTS trg_plans_updated_at ON plans;')
    op.execute('DROP TRIGGER IF EXISTS trg_entitlements_updated_at ON entitlements;')
    op.execute('DROP FUNCTION IF EXISTS set_updated_at();')
    op.execute('DROP TRIGGER IF EXISTS trg_entitlements_history ON entitlements;')
    op.execute('DROP FUNCTION IF EXISTS entitlements_history_fn();')
    op.execute('DROP FUNCTION IF EXISTS consume_promo_session(uuid, timestamptz, integer, timestamptz);')

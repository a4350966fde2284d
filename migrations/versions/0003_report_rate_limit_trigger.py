"""reject free-tier weekly reports inside the 7 day window

Revision ID: 0003
Revises: 0002
Create Date: 2026-02-09 00:00:00

"""
from __future__ import annotations

from alembic import op


revision = '0003'
down_revision = '0002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # The advisory lock serializes inserts per email so two racing requests
    # cannot both pass the check. Message prefix 'rate_limited:' is matched by
    # the API to turn the failure into a 429.
    op.execute(
        r'''
        CREATE OR REPLACE FUNCTION weekly_report_rate_limit_fn()
        RETURNS trigger LANGUAGE plpgsql AS $$
        DECLARE
            v_last timestamptz;
        BEGIN
            IF NEW.tier = 'paid' THEN
                RETURN NEW;
            END IF;

            PERFORM pg_advisory_xact_lock(hashtext('weekly_report:' || NEW.email));

            SELECT created_at
            INTO v_last
            FROM weekly_report_requests
            WHERE email = NEW.email
              AND created_at > NEW.created_at - interval '7 days'
            ORDER BY created_at DESC
            LIMIT 1;

            IF v_last IS NOT NULL THEN
                RAISE EXCEPTION 'rate_limited: % next allowed at %', NEW.email, v_last + interval '7 days';
            END IF;

            RETURN NEW;
        END;
        $$;

        DROP TRIGGER IF EXISTS trg_weekly_report_rate_limit ON weekly_report_requests;
        CREATE TRIGGER trg_weekly_report_rate_limit
        BEFORE INSERT ON weekly_report_requests
        FOR EACH ROW
        EXECUTE FUNCTION weekly_report_rate_limit_fn();
        '''
    )


def downgrade() -> None:
    op.execute('DROP TRIGGER IF EXISTS trg_weekly_report_rate_limit ON weekly_report_requests;')
    op.execute('DROP FUNCTION IF EXISTS weekly_report_rate_limit_fn();')

"""002: create positions table

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE positions (
            id                  UUID        PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id             VARCHAR(64) NOT NULL,
            kind                VARCHAR(20) NOT NULL,
            principal           BIGINT      NOT NULL,
            rate_bps            INT         NOT NULL,
            period_count        INT         NOT NULL,
            start_time          TIMESTAMPTZ NOT NULL,
            end_time            TIMESTAMPTZ,
            status              VARCHAR(20) NOT NULL DEFAULT 'ACTIVE',
            accumulated_profit  BIGINT      NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_positions_kind                CHECK (kind IN ('INVESTMENT', 'LIVE_TRADE')),
            CONSTRAINT ck_positions_status              CHECK (status IN ('ACTIVE', 'COMPLETED', 'CANCELLED')),
            CONSTRAINT ck_positions_principal_gt_0      CHECK (principal > 0),
            CONSTRAINT ck_positions_rate_bps_gte_0      CHECK (rate_bps >= 0),
            CONSTRAINT ck_positions_period_count_gte_1  CHECK (period_count >= 1),
            CONSTRAINT ck_positions_accumulated_gte_0   CHECK (accumulated_profit >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_positions_user ON positions (user_id);")
    # Partial index backing the eligibility scan
    op.execute(
        "CREATE INDEX idx_positions_active_created ON positions (created_at, id) "
        "WHERE status = 'ACTIVE';"
    )
    op.execute("""
        CREATE TRIGGER trg_positions_updated_at
            BEFORE UPDATE ON positions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute(
        "COMMENT ON TABLE positions IS "
        "'Investments (daily accrual) and live trades (hourly accrual); amounts in cents';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS positions CASCADE;")

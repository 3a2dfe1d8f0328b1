"""004: create distribution_records table

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE distribution_records (
            id                  BIGSERIAL   PRIMARY KEY,
            position_id         UUID        NOT NULL REFERENCES positions (id),
            user_id             VARCHAR(64) NOT NULL,
            principal           BIGINT      NOT NULL,
            profit_amount       BIGINT      NOT NULL,
            period_number       INT         NOT NULL,
            period_key          TIMESTAMPTZ NOT NULL,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_distribution_records_position_period UNIQUE (position_id, period_key),
            CONSTRAINT ck_distribution_records_profit_gte_0    CHECK (profit_amount >= 0),
            CONSTRAINT ck_distribution_records_period_gte_1    CHECK (period_number >= 1)
        );
    """)
    op.execute(
        "CREATE INDEX idx_distribution_records_created ON distribution_records (created_at);"
    )
    op.execute(
        "COMMENT ON TABLE distribution_records IS "
        "'Immutable: one row per paid accrual period; the unique key is the double-pay guard';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS distribution_records CASCADE;")

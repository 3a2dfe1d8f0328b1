"""003: create balances table

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE balances (
            user_id             VARCHAR(64) PRIMARY KEY,
            total_balance       BIGINT      NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_balances_total_gte_0  CHECK (total_balance >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_balances_updated_at
            BEFORE UPDATE ON balances
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE balances IS 'One row per user; all amounts in cents';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS balances CASCADE;")

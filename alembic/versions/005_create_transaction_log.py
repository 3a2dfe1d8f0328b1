"""005: create transaction_log table

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE transaction_log (
            id                  BIGSERIAL    PRIMARY KEY,
            user_id             VARCHAR(64)  NOT NULL,
            kind                VARCHAR(30)  NOT NULL,
            amount              BIGINT       NOT NULL,
            balance_after       BIGINT       NOT NULL,
            description         VARCHAR(500) NOT NULL,
            reference_id        VARCHAR(64),
            created_at          TIMESTAMPTZ  NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_transaction_log_kind CHECK (kind IN ('PROFIT', 'CAPITAL_RETURN'))
        );
    """)
    op.execute("CREATE INDEX idx_transaction_log_user ON transaction_log (user_id, id DESC);")
    op.execute("CREATE INDEX idx_transaction_log_ref ON transaction_log (reference_id);")
    op.execute("COMMENT ON TABLE transaction_log IS 'Append-only user money movements';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transaction_log CASCADE;")

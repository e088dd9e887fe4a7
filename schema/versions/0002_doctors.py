"""doctors

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-17

No constraint keeps a doctor on call per shift: the write skew scenario checks that rule
inside its transactions only.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "doctors",
        sa.Column("name", sa.String(255), primary_key=True),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("on_call", sa.Boolean(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("doctors")

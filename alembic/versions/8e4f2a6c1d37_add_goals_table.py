"""add_goals_table

Revision ID: 8e4f2a6c1d37
Revises: 3c1d9e7a5b20
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8e4f2a6c1d37"
down_revision: Union[str, None] = "3c1d9e7a5b20"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("target_value", sa.String(length=512), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("type IN ('event', 'url')", name="valid_goal_type"),
        sa.CheckConstraint("target_value <> ''", name="ck_goals_target_value_nonempty"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_goals_created_at", "goals", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_goals_created_at", table_name="goals")
    op.drop_table("goals")

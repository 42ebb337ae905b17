"""add obligation groups

Revision ID: 202610190900
Revises: 202608010900
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610190900"
down_revision = "202608010900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "obligation_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_obligation_groups_user_order",
        "obligation_groups",
        ["user_id", "sort_order"],
    )

    with op.batch_alter_table("planned_obligations") as batch_op:
        batch_op.add_column(sa.Column("group_id", sa.Integer()))
        batch_op.create_foreign_key(
            "fk_planned_obligations_group_id",
            "obligation_groups",
            ["group_id"],
            ["id"],
        )


def downgrade() -> None:
    with op.batch_alter_table("planned_obligations") as batch_op:
        batch_op.drop_constraint("fk_planned_obligations_group_id", type_="foreignkey")
        batch_op.drop_column("group_id")

    op.drop_index("ix_obligation_groups_user_order", table_name="obligation_groups")
    op.drop_table("obligation_groups")

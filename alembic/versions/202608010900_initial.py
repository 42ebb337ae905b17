"""initial obligations schema

Revision ID: 202608010900
Revises:
Create Date: 2026-08-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202608010900"
down_revision = None
branch_labels = None
depends_on = None


CATEGORY_MAIN = sa.Enum("INCOME", "EXPENSE", "DEBT", "SAVING", name="categorymain")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "subcategories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category_main", CATEGORY_MAIN, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category_main", "name", name="uq_subcategory_user_main_name"
        ),
    )

    op.create_table(
        "planned_obligations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=120)),
        sa.Column("category_main", CATEGORY_MAIN, nullable=False),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payee", sa.String(length=120)),
        sa.Column("note", sa.Text()),
        sa.Column(
            "frequency",
            sa.Enum(
                "WEEKLY",
                "MONTHLY",
                "QUARTERLY",
                "SEMIANNUAL",
                "YEARLY",
                "ONE_TIME",
                name="frequency",
            ),
            nullable=False,
        ),
        sa.Column(
            "confirmation_mode",
            sa.Enum("AUTOMATIC", "MANUAL", name="confirmationmode"),
            nullable=False,
            server_default="MANUAL",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column(
            "applied_to_budget",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("budget_year", sa.Integer()),
        sa.Column("budget_mode", sa.Enum("divide", "specific", name="yearlymode")),
        sa.Column("budget_target_month", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_positive"),
        sa.CheckConstraint(
            "budget_target_month IS NULL OR "
            "(budget_target_month >= 0 AND budget_target_month <= 11)",
            name="ck_obligation_target_month_range",
        ),
    )
    op.create_index(
        "ix_obligations_user_due",
        "planned_obligations",
        ["user_id", "is_active", "next_due_date"],
    )
    op.create_index(
        "ix_obligations_user_subcategory",
        "planned_obligations",
        ["user_id", "category_main", "subcategory_id"],
    )

    op.create_table(
        "budget_cells",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category_main", CATEGORY_MAIN, nullable=False),
        sa.Column(
            "subcategory_id",
            sa.Integer(),
            sa.ForeignKey("subcategories.id"),
            nullable=False,
        ),
        sa.Column("period", sa.String(length=7), nullable=False),
        sa.Column("amount", sa.Numeric(18, 6), nullable=False),
        sa.Column(
            "style",
            sa.Enum("FIXED", name="budgetstyle"),
            nullable=False,
            server_default="FIXED",
        ),
        sa.Column(
            "managed_automatically",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "category_main",
            "subcategory_id",
            "period",
            name="uq_budget_cell_scope_period",
        ),
    )
    op.create_index(
        "ix_budget_cells_user_period", "budget_cells", ["user_id", "period"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_main", CATEGORY_MAIN, nullable=False),
        sa.Column("subcategory_id", sa.Integer(), sa.ForeignKey("subcategories.id")),
        sa.Column("payee", sa.String(length=120)),
        sa.Column("note", sa.Text()),
        sa.Column(
            "origin_obligation_id",
            sa.Integer(),
            sa.ForeignKey("planned_obligations.id"),
        ),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.UniqueConstraint(
            "user_id",
            "origin_obligation_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_budget_cells_user_period", table_name="budget_cells")
    op.drop_table("budget_cells")
    op.drop_index("ix_obligations_user_subcategory", table_name="planned_obligations")
    op.drop_index("ix_obligations_user_due", table_name="planned_obligations")
    op.drop_table("planned_obligations")
    op.drop_table("subcategories")

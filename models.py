from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


class CategoryMain(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    debt = "DEBT"
    saving = "SAVING"


class Frequency(str, Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    semiannual = "SEMIANNUAL"
    yearly = "YEARLY"
    one_time = "ONE_TIME"


class ConfirmationMode(str, Enum):
    automatic = "AUTOMATIC"
    manual = "MANUAL"


class YearlyMode(str, Enum):
    divide = "divide"
    specific = "specific"


class BudgetStyle(str, Enum):
    fixed = "FIXED"


CATEGORY_MAIN_ENUM = _value_enum(CategoryMain, "categorymain")
FREQUENCY_ENUM = _value_enum(Frequency, "frequency")
CONFIRMATION_MODE_ENUM = _value_enum(ConfirmationMode, "confirmationmode")
YEARLY_MODE_ENUM = _value_enum(YearlyMode, "yearlymode")
BUDGET_STYLE_ENUM = _value_enum(BudgetStyle, "budgetstyle")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Subcategory(Base, TimestampMixin):
    __tablename__ = "subcategories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_main: Mapped[CategoryMain] = mapped_column(
        CATEGORY_MAIN_ENUM, nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    obligations: Mapped[list["PlannedObligation"]] = relationship(
        "PlannedObligation", back_populates="subcategory"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_main", "name", name="uq_subcategory_user_main_name"
        ),
    )


class ObligationGroup(Base, TimestampMixin):
    __tablename__ = "obligation_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    obligations: Mapped[list["PlannedObligation"]] = relationship(
        "PlannedObligation",
        back_populates="group",
        order_by="PlannedObligation.id",
    )

    __table_args__ = (
        Index("ix_obligation_groups_user_order", "user_id", "sort_order"),
    )


class PlannedObligation(Base, TimestampMixin):
    __tablename__ = "planned_obligations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[Optional[str]] = mapped_column(String(120))
    category_main: Mapped[CategoryMain] = mapped_column(
        CATEGORY_MAIN_ENUM, nullable=False
    )
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payee: Mapped[Optional[str]] = mapped_column(String(120))
    note: Mapped[Optional[str]] = mapped_column(Text)
    frequency: Mapped[Frequency] = mapped_column(FREQUENCY_ENUM, nullable=False)
    confirmation_mode: Mapped[ConfirmationMode] = mapped_column(
        CONFIRMATION_MODE_ENUM, nullable=False, default=ConfirmationMode.manual
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)

    applied_to_budget: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    budget_year: Mapped[Optional[int]] = mapped_column(Integer)
    budget_mode: Mapped[Optional[YearlyMode]] = mapped_column(YEARLY_MODE_ENUM)
    budget_target_month: Mapped[Optional[int]] = mapped_column(Integer)
    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("obligation_groups.id")
    )

    subcategory: Mapped["Subcategory"] = relationship(
        "Subcategory", back_populates="obligations"
    )
    group: Mapped[Optional["ObligationGroup"]] = relationship(
        "ObligationGroup", back_populates="obligations"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="origin_obligation"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_obligation_amount_positive"),
        CheckConstraint(
            "budget_target_month IS NULL OR "
            "(budget_target_month >= 0 AND budget_target_month <= 11)",
            name="ck_obligation_target_month_range",
        ),
        Index("ix_obligations_user_due", "user_id", "is_active", "next_due_date"),
        Index(
            "ix_obligations_user_subcategory",
            "user_id",
            "category_main",
            "subcategory_id",
        ),
    )


class BudgetCell(Base, TimestampMixin):
    __tablename__ = "budget_cells"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_main: Mapped[CategoryMain] = mapped_column(
        CATEGORY_MAIN_ENUM, nullable=False
    )
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id"), nullable=False
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    style: Mapped[BudgetStyle] = mapped_column(
        BUDGET_STYLE_ENUM, nullable=False, default=BudgetStyle.fixed
    )
    managed_automatically: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    subcategory: Mapped["Subcategory"] = relationship("Subcategory")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "category_main",
            "subcategory_id",
            "period",
            name="uq_budget_cell_scope_period",
        ),
        Index("ix_budget_cells_user_period", "user_id", "period"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_main: Mapped[CategoryMain] = mapped_column(
        CATEGORY_MAIN_ENUM, nullable=False
    )
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    payee: Mapped[Optional[str]] = mapped_column(String(120))
    note: Mapped[Optional[str]] = mapped_column(Text)
    origin_obligation_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("planned_obligations.id")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    origin_obligation: Mapped[Optional["PlannedObligation"]] = relationship(
        "PlannedObligation", back_populates="transactions"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        UniqueConstraint(
            "user_id",
            "origin_obligation_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
    )

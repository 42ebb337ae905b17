"""Domain snapshot of a planned obligation and the engine's error taxonomy.

The engine never reads the database. Callers convert whatever they store into
an :class:`Obligation` and pass it in together with a subcategory table.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from models import CategoryMain, ConfirmationMode, Frequency


@dataclass(frozen=True)
class SubcategoryEntry:
    id: Any
    name: str


SubcategoryTable = Mapping[str, Sequence[SubcategoryEntry]]


@dataclass(frozen=True)
class Obligation:
    id: Any
    amount: Decimal
    frequency: Frequency
    category_main: CategoryMain
    next_due_date: date
    start_date: Optional[date] = None
    confirmation_mode: ConfirmationMode = ConfirmationMode.manual
    is_active: bool = True
    subcategory_id: Any = None
    subcategory_name: Optional[str] = None
    title: Optional[str] = None
    end_date: Optional[date] = None

    @property
    def label(self) -> str:
        return self.title or "Untitled"

    @classmethod
    def from_record(cls, record: Any) -> "Obligation":
        """Snapshot a ``PlannedObligation`` row (or anything shaped like one)."""
        subcategory = getattr(record, "subcategory", None)
        return cls(
            id=record.id,
            amount=Decimal(record.amount_cents) / 100,
            frequency=record.frequency,
            category_main=record.category_main,
            next_due_date=record.next_due_date,
            start_date=record.start_date,
            confirmation_mode=record.confirmation_mode,
            is_active=record.is_active,
            subcategory_id=record.subcategory_id,
            subcategory_name=subcategory.name if subcategory is not None else None,
            title=record.title,
            end_date=record.end_date,
        )


class ObligationError(Exception):
    """Base class for engine errors; carries enough context to log and display."""

    def __init__(
        self,
        message: str,
        *,
        obligation_id: Any = None,
        period: Optional[str] = None,
        frequency: Any = None,
    ) -> None:
        self.obligation_id = obligation_id
        self.period = period
        self.frequency = frequency
        self.detail = message
        super().__init__(self._render(message))

    def _render(self, message: str) -> str:
        context = []
        if self.obligation_id is not None:
            context.append(f"obligation={self.obligation_id}")
        if self.frequency is not None:
            value = getattr(self.frequency, "value", self.frequency)
            context.append(f"frequency={value}")
        if self.period is not None:
            context.append(f"period={self.period}")
        if not context:
            return message
        return f"{message} ({', '.join(context)})"


class SubcategoryUnresolved(ObligationError, ValueError):
    pass


class YearMismatch(ObligationError, ValueError):
    pass


class UnsupportedFrequency(ObligationError, ValueError):
    pass


class MissingStartDate(ObligationError, ValueError):
    pass


class IllegalState(ObligationError, ValueError):
    pass


class ScheduleDidNotAdvance(ObligationError, RuntimeError):
    pass

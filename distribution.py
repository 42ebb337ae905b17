"""Spread a planned obligation's amount over the monthly budget cells of a year.

Everything here is pure: the same obligation, year, subcategory table and
options always produce the same list of deltas. Amounts stay as ``Decimal``
without rounding so that applying and later removing an obligation cancels out
exactly in an additive budget store.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

from models import BudgetStyle, CategoryMain, Frequency, YearlyMode
from obligations import (
    IllegalState,
    MissingStartDate,
    Obligation,
    SubcategoryTable,
    SubcategoryUnresolved,
    UnsupportedFrequency,
    YearMismatch,
)
from periods import parse_period_key, period_key

WEEKS_PER_YEAR = 52
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class DistributionOptions:
    """How a YEARLY obligation lands in the budget; ignored by other frequencies.

    ``target_month`` is 0-based (January is 0), matching what month pickers send.
    """

    mode: YearlyMode = YearlyMode.divide
    target_month: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", YearlyMode(self.mode))
        if self.target_month is not None and not 0 <= self.target_month <= 11:
            raise ValueError(
                f"target_month must be between 0 and 11, got {self.target_month}"
            )


@dataclass(frozen=True)
class BudgetCellDelta:
    category_main: CategoryMain
    subcategory_id: Any
    period: str
    amount: Decimal
    notes: str
    style: BudgetStyle = BudgetStyle.fixed
    # None means "leave the stored flag as it is".
    managed_automatically: Optional[bool] = True

    @property
    def month_index(self) -> int:
        return parse_period_key(self.period).month_index

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category_main": getattr(self.category_main, "value", self.category_main),
            "subcategory_id": self.subcategory_id,
            "period": self.period,
            "amount": self.amount,
            "style": self.style.value,
            "notes": self.notes,
        }
        if self.managed_automatically is not None:
            data["managed_automatically"] = self.managed_automatically
        return data


def _magnitude(obligation: Obligation) -> Decimal:
    return abs(Decimal(str(obligation.amount)))


def frequency_of(obligation: Obligation) -> Frequency:
    try:
        return Frequency(obligation.frequency)
    except ValueError:
        raise UnsupportedFrequency(
            f"Unsupported frequency {obligation.frequency!r}",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        ) from None


def _candidates(category_main: Any, table: SubcategoryTable) -> list:
    key = getattr(category_main, "value", category_main)
    own = list(table.get(key, ()))
    others = [
        entry
        for main, entries in table.items()
        if getattr(main, "value", main) != key
        for entry in entries
    ]
    return own + others


def resolve_subcategory(
    obligation: Obligation, table: SubcategoryTable
) -> tuple[Any, str]:
    """Return the ``(id, name)`` pair the obligation's subcategory reference points to.

    An id must exist in the table, and must agree with the name when both are
    given. A bare name is matched case-insensitively, first among the
    obligation's own main category, then anywhere in the table.
    """
    has_id = obligation.subcategory_id is not None
    has_name = bool(obligation.subcategory_name and obligation.subcategory_name.strip())
    if not has_id and not has_name:
        raise SubcategoryUnresolved(
            "Obligation has no subcategory reference",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        )

    candidates = _candidates(obligation.category_main, table)
    wanted = obligation.subcategory_name.strip().casefold() if has_name else None
    if has_id:
        entry = next(
            (e for e in candidates if e.id == obligation.subcategory_id), None
        )
        if entry is None:
            raise SubcategoryUnresolved(
                f"Subcategory id {obligation.subcategory_id!r} not found",
                obligation_id=obligation.id,
                frequency=obligation.frequency,
            )
        if wanted is not None and entry.name.strip().casefold() != wanted:
            raise SubcategoryUnresolved(
                f"Subcategory id {entry.id!r} is {entry.name!r}, "
                f"not {obligation.subcategory_name!r}",
                obligation_id=obligation.id,
                frequency=obligation.frequency,
            )
        return entry.id, entry.name

    for entry in candidates:
        if entry.name.strip().casefold() == wanted:
            return entry.id, entry.name
    raise SubcategoryUnresolved(
        f"Subcategory {obligation.subcategory_name!r} not found",
        obligation_id=obligation.id,
        frequency=obligation.frequency,
    )


# Each rule returns (month 1-12, amount) pairs and a label for the audit note.
_Rule = Callable[
    [Obligation, Decimal, int, DistributionOptions], tuple[list[tuple[int, Decimal]], str]
]


def _every_month(amount: Decimal) -> list[tuple[int, Decimal]]:
    return [(month, amount) for month in range(1, MONTHS_PER_YEAR + 1)]


def _weekly(obligation, amount, year, options):
    monthly_equivalent = amount * WEEKS_PER_YEAR / MONTHS_PER_YEAR
    return _every_month(monthly_equivalent), "weekly"


def _monthly(obligation, amount, year, options):
    return _every_month(amount), "monthly"


def _quarterly(obligation, amount, year, options):
    per_month = amount / 3
    cells = []
    for quarter in range(4):
        first_month = quarter * 3 + 1
        for offset in range(3):
            cells.append((first_month + offset, per_month))
    return cells, "quarterly"


def _semiannual(obligation, amount, year, options):
    return _every_month(amount / 6), "semiannual"


def _yearly(obligation, amount, year, options):
    if options.mode == YearlyMode.divide:
        return _every_month(amount / MONTHS_PER_YEAR), "yearly, divided"

    if options.target_month is not None:
        month = options.target_month + 1
    elif obligation.start_date is not None:
        month = obligation.start_date.month
    else:
        raise MissingStartDate(
            "Yearly obligation needs a target month or a start date",
            obligation_id=obligation.id,
            frequency=Frequency.yearly,
        )
    return [(month, amount)], "yearly"


def _one_time(obligation, amount, year, options):
    start = obligation.start_date
    if start is None:
        raise MissingStartDate(
            "One-time obligation needs a start date",
            obligation_id=obligation.id,
            frequency=Frequency.one_time,
        )
    if start.year != year:
        raise YearMismatch(
            f"One-time obligation does not fall in {year}",
            obligation_id=obligation.id,
            frequency=Frequency.one_time,
            period=period_key(start.year, start.month),
        )
    return [(start.month, amount)], "one-time"


_RULES: dict[Frequency, _Rule] = {
    Frequency.weekly: _weekly,
    Frequency.monthly: _monthly,
    Frequency.quarterly: _quarterly,
    Frequency.semiannual: _semiannual,
    Frequency.yearly: _yearly,
    Frequency.one_time: _one_time,
}

_missing_rules = set(Frequency) - set(_RULES)
if _missing_rules:  # pragma: no cover
    raise RuntimeError(
        f"No distribution rule for {sorted(f.value for f in _missing_rules)}"
    )


def budget_footprint(
    obligation: Obligation,
    target_year: int,
    subcategory_table: SubcategoryTable,
    options: Optional[DistributionOptions] = None,
) -> list[BudgetCellDelta]:
    """Cells the obligation contributes to in ``target_year``, active or not."""
    options = options or DistributionOptions()
    frequency = frequency_of(obligation)
    subcategory_id, _name = resolve_subcategory(obligation, subcategory_table)
    cells, label = _RULES[frequency](
        obligation, _magnitude(obligation), target_year, options
    )
    notes = (
        f"Auto-applied from planned obligation {obligation.id} ({label}): "
        f"{obligation.label}"
    )
    deltas = [
        BudgetCellDelta(
            category_main=obligation.category_main,
            subcategory_id=subcategory_id,
            period=period_key(target_year, month),
            amount=amount,
            notes=notes,
        )
        for month, amount in cells
    ]
    return sorted(deltas, key=lambda delta: delta.period)


def distribute(
    obligation: Obligation,
    target_year: int,
    subcategory_table: SubcategoryTable,
    options: Optional[DistributionOptions] = None,
) -> list[BudgetCellDelta]:
    if not obligation.is_active:
        raise IllegalState(
            "Inactive obligations are not distributed",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        )
    return budget_footprint(obligation, target_year, subcategory_table, options)

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from distribution import frequency_of
from models import Frequency
from obligations import IllegalState, Obligation, ScheduleDidNotAdvance
from periods import period_key


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Snap to the last day when the month is too short for the anchor day.
    day = min(desired_day, days_in_month(year, month))
    return date(year, month, day)


@dataclass(frozen=True)
class ScheduleStep:
    months: int = 0
    days: int = 0

    def apply(self, base: date, anchor_day: int) -> date:
        if self.months:
            return _add_months(base, self.months, desired_day=anchor_day)
        return base + timedelta(days=self.days)

    def __str__(self) -> str:
        if self.months:
            unit = "month" if self.months == 1 else "months"
            return f"+{self.months} {unit}"
        unit = "day" if self.days == 1 else "days"
        return f"+{self.days} {unit}"


STEPS: dict[Frequency, Optional[ScheduleStep]] = {
    Frequency.weekly: ScheduleStep(days=7),
    Frequency.monthly: ScheduleStep(months=1),
    Frequency.quarterly: ScheduleStep(months=3),
    Frequency.semiannual: ScheduleStep(months=6),
    Frequency.yearly: ScheduleStep(months=12),
    Frequency.one_time: None,
}

_missing_steps = set(Frequency) - set(STEPS)
if _missing_steps:  # pragma: no cover
    raise RuntimeError(f"No schedule step for {sorted(f.value for f in _missing_steps)}")


@dataclass(frozen=True)
class Materialization:
    updated_obligation: Obligation
    step_applied: Optional[ScheduleStep]
    occurrence_date: date

    @property
    def deactivated(self) -> bool:
        return not self.updated_obligation.is_active


def _as_date(now: Union[date, datetime]) -> date:
    if isinstance(now, datetime):
        return now.date()
    return now


def anchor_day(obligation: Obligation) -> int:
    """Day of month monthly steps aim for, so Jan 31 -> Feb 28 -> Mar 31."""
    return (obligation.start_date or obligation.next_due_date).day


def next_occurrence(obligation: Obligation, from_date: date) -> date:
    """The occurrence after ``from_date``; never returns a date that is not later."""
    frequency = frequency_of(obligation)
    step = STEPS[frequency]
    if step is None:
        raise IllegalState(
            "One-time obligations have no next occurrence",
            obligation_id=obligation.id,
            frequency=frequency,
        )
    candidate = step.apply(from_date, anchor_day(obligation))
    if candidate <= from_date:
        raise ScheduleDidNotAdvance(
            f"Step {step} from {from_date.isoformat()} produced {candidate.isoformat()}",
            obligation_id=obligation.id,
            frequency=frequency,
            period=period_key(from_date.year, from_date.month),
        )
    return candidate


def is_due(obligation: Obligation, now: Union[date, datetime]) -> bool:
    return obligation.is_active and obligation.next_due_date <= _as_date(now)


def activate(obligation: Obligation) -> Obligation:
    if obligation.is_active:
        raise IllegalState(
            "Obligation is already active",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        )
    return replace(obligation, is_active=True)


def deactivate(obligation: Obligation) -> Obligation:
    if not obligation.is_active:
        raise IllegalState(
            "Obligation is already inactive",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        )
    return replace(obligation, is_active=False)


def materialize(obligation: Obligation, now: Union[date, datetime]) -> Materialization:
    """Consume the due occurrence and move the schedule past it.

    Recording the ledger transaction is the caller's job. A one-time obligation
    goes inactive; an obligation whose next date passes ``end_date`` is stored
    advanced and inactive.
    """
    if not obligation.is_active:
        raise IllegalState(
            "Cannot materialize an inactive obligation",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
        )
    occurrence = obligation.next_due_date
    if occurrence > _as_date(now):
        raise IllegalState(
            f"Obligation is not due until {occurrence.isoformat()}",
            obligation_id=obligation.id,
            frequency=obligation.frequency,
            period=period_key(occurrence.year, occurrence.month),
        )

    frequency = frequency_of(obligation)
    step = STEPS[frequency]
    if step is None:
        return Materialization(replace(obligation, is_active=False), None, occurrence)

    new_date = next_occurrence(obligation, occurrence)
    still_active = obligation.end_date is None or new_date <= obligation.end_date
    updated = replace(obligation, next_due_date=new_date, is_active=still_active)
    return Materialization(updated, step, occurrence)


def initial_due_date(
    start_date: date, frequency: Frequency, today: Optional[date] = None
) -> date:
    """First occurrence on or after ``today``, counted from ``start_date``.

    Each candidate is computed from the start date rather than from the previous
    candidate, so month-end anchors do not drift.
    """
    today = today or local_today()
    step = STEPS[Frequency(frequency)]
    if step is None or start_date >= today:
        return start_date

    if step.days:
        elapsed = (today - start_date).days
        periods = -(-elapsed // step.days)
        return start_date + timedelta(days=periods * step.days)

    months_elapsed = (today.year - start_date.year) * 12 + today.month - start_date.month
    k = months_elapsed // step.months
    candidate = _add_months(start_date, k * step.months, desired_day=start_date.day)
    while candidate < today:
        k += 1
        candidate = _add_months(start_date, k * step.months, desired_day=start_date.day)
    return candidate


def upcoming_occurrences(obligation: Obligation, count: int = 5) -> list[date]:
    if count < 0:
        raise ValueError("count must not be negative")
    if not obligation.is_active or count == 0:
        return []
    if STEPS[frequency_of(obligation)] is None:
        return [obligation.next_due_date]

    occurrences: list[date] = []
    current = obligation.next_due_date
    while len(occurrences) < count:
        if obligation.end_date and current > obligation.end_date:
            break
        occurrences.append(current)
        current = next_occurrence(obligation, current)
    return occurrences

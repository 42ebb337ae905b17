"""Inverse of the distribution: the deltas that take an obligation back out of the budget.

A budget cell may be fed by several obligations. When one of them is removed,
the cell's ``managed_automatically`` flag is decided by asking whether any
other active obligation still lands in that subcategory and month. The query
is injected so this module stays free of storage concerns.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional, Union

from distribution import (
    BudgetCellDelta,
    DistributionOptions,
    budget_footprint,
    resolve_subcategory,
)
from obligations import Obligation, SubcategoryTable

logger = logging.getLogger(__name__)

# (category_main, subcategory_name, month_index_0_based, excluding_obligation_id)
OtherActivePredicate = Callable[
    [Any, str, int, Any], Union[bool, Awaitable[bool]]
]


def _removal_note(obligation: Obligation) -> str:
    return f"Removed planned obligation {obligation.id}: {obligation.label}"


def _negated(obligation: Obligation, delta: BudgetCellDelta) -> BudgetCellDelta:
    return replace(
        delta,
        amount=-abs(delta.amount),
        notes=_removal_note(obligation),
        managed_automatically=None,
    )


def _log_query_failure(
    obligation: Obligation, delta: BudgetCellDelta, exc: BaseException
) -> None:
    logger.warning(
        f"reconcile_failed: obligation={obligation.id} period={delta.period} "
        f"error={exc!r}; leaving managed flag unchanged"
    )


def remove(
    obligation: Obligation,
    target_year: int,
    subcategory_table: SubcategoryTable,
    options: Optional[DistributionOptions] = None,
    has_other_active_obligation: Optional[OtherActivePredicate] = None,
) -> list[BudgetCellDelta]:
    """Negated deltas for ``obligation`` with the managed flag reconciled per cell.

    Without a predicate the flag is left absent so the store keeps whatever it
    had. The predicate must answer synchronously here; use :func:`remove_async`
    for coroutine predicates.
    """
    footprint = budget_footprint(obligation, target_year, subcategory_table, options)
    if has_other_active_obligation is None:
        return [_negated(obligation, delta) for delta in footprint]

    _id, subcategory_name = resolve_subcategory(obligation, subcategory_table)
    removals = []
    for delta in footprint:
        removal = _negated(obligation, delta)
        try:
            answer = has_other_active_obligation(
                obligation.category_main,
                subcategory_name,
                delta.month_index,
                obligation.id,
            )
            if inspect.isawaitable(answer):
                if hasattr(answer, "close"):
                    answer.close()
                raise TypeError("asynchronous predicate passed to remove()")
            removal = replace(removal, managed_automatically=bool(answer))
        except Exception as exc:
            _log_query_failure(obligation, delta, exc)
        removals.append(removal)
    return removals


async def remove_async(
    obligation: Obligation,
    target_year: int,
    subcategory_table: SubcategoryTable,
    options: Optional[DistributionOptions] = None,
    has_other_active_obligation: Optional[OtherActivePredicate] = None,
) -> list[BudgetCellDelta]:
    """Same as :func:`remove`, awaiting the predicate when it returns an awaitable."""
    footprint = budget_footprint(obligation, target_year, subcategory_table, options)
    if has_other_active_obligation is None:
        return [_negated(obligation, delta) for delta in footprint]

    _id, subcategory_name = resolve_subcategory(obligation, subcategory_table)
    removals = []
    for delta in footprint:
        removal = _negated(obligation, delta)
        try:
            answer = has_other_active_obligation(
                obligation.category_main,
                subcategory_name,
                delta.month_index,
                obligation.id,
            )
            if inspect.isawaitable(answer):
                answer = await answer
            removal = replace(removal, managed_automatically=bool(answer))
        except Exception as exc:
            _log_query_failure(obligation, delta, exc)
        removals.append(removal)
    return removals

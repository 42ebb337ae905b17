from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from distribution import (
    BudgetCellDelta,
    DistributionOptions,
    budget_footprint,
    distribute,
)
from models import (
    BudgetCell,
    BudgetStyle,
    CategoryMain,
    ConfirmationMode,
    ObligationGroup,
    PlannedObligation,
    Subcategory,
    Transaction,
    YearlyMode,
)
from obligations import (
    IllegalState,
    Obligation,
    SubcategoryEntry,
    SubcategoryTable,
)
from periods import period_key
from reconciliation import remove
from recurrence import (
    activate,
    deactivate,
    initial_due_date,
    is_due,
    local_today,
    materialize,
    upcoming_occurrences,
)
from schemas import (
    BudgetApplicationIn,
    ObligationGroupIn,
    ObligationIn,
    SubcategoryIn,
)

logger = logging.getLogger(__name__)

# Budget cells keep six decimals so weekly and divided amounts round-trip.
AMOUNT_QUANTUM = Decimal("0.000001")


def get_current_user_id() -> int:
    return 1


class SubcategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, subcategory_id: int) -> Subcategory:
        subcategory = self.session.get(Subcategory, subcategory_id)
        if not subcategory or subcategory.user_id != self.user_id:
            raise ValueError("Subcategory not found")
        return subcategory

    def list(self, category_main: Optional[CategoryMain] = None) -> list[Subcategory]:
        stmt = (
            select(Subcategory)
            .where(Subcategory.user_id == self.user_id)
            .order_by(Subcategory.category_main, Subcategory.name)
        )
        if category_main is not None:
            stmt = stmt.where(Subcategory.category_main == category_main)
        return self.session.scalars(stmt).all()

    def find_by_name(
        self, category_main: CategoryMain, name: str
    ) -> Optional[Subcategory]:
        stmt = select(Subcategory).where(
            Subcategory.user_id == self.user_id,
            Subcategory.category_main == category_main,
            func.lower(Subcategory.name) == name.strip().lower(),
        )
        return self.session.scalars(stmt).first()

    def create(self, data: SubcategoryIn) -> Subcategory:
        if self.find_by_name(data.category_main, data.name):
            raise ValueError("Subcategory already exists")
        subcategory = Subcategory(
            user_id=self.user_id,
            category_main=data.category_main,
            name=data.name.strip(),
        )
        self.session.add(subcategory)
        self.session.commit()
        self.session.refresh(subcategory)
        return subcategory

    def resolve(
        self,
        category_main: CategoryMain,
        subcategory_id: Optional[int],
        subcategory_name: Optional[str],
    ) -> Subcategory:
        if subcategory_id is not None:
            subcategory = self.get(subcategory_id)
        elif subcategory_name:
            subcategory = self.find_by_name(category_main, subcategory_name)
            if subcategory is None:
                raise ValueError("Subcategory not found")
        else:
            raise ValueError("Subcategory required")
        if subcategory.category_main != category_main:
            raise ValueError("Subcategory belongs to a different main category")
        return subcategory

    def table(self) -> SubcategoryTable:
        table: dict[str, list[SubcategoryEntry]] = {}
        for subcategory in self.list():
            table.setdefault(subcategory.category_main.value, []).append(
                SubcategoryEntry(id=subcategory.id, name=subcategory.name)
            )
        return table


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get_cell(
        self, category_main: CategoryMain, subcategory_id: int, period: str
    ) -> Optional[BudgetCell]:
        stmt = select(BudgetCell).where(
            BudgetCell.user_id == self.user_id,
            BudgetCell.category_main == category_main,
            BudgetCell.subcategory_id == subcategory_id,
            BudgetCell.period == period,
        )
        return self.session.scalar(stmt)

    def cells_for_year(
        self, year: int, category_main: Optional[CategoryMain] = None
    ) -> list[BudgetCell]:
        stmt = (
            select(BudgetCell)
            .where(
                BudgetCell.user_id == self.user_id,
                BudgetCell.period >= period_key(year, 1),
                BudgetCell.period <= period_key(year, 12),
            )
            .order_by(BudgetCell.period, BudgetCell.subcategory_id)
        )
        if category_main is not None:
            stmt = stmt.where(BudgetCell.category_main == category_main)
        return self.session.scalars(stmt).all()

    def accumulate(
        self, deltas: Iterable[BudgetCellDelta], *, commit: bool = True
    ) -> list[BudgetCell]:
        """Add each delta onto its cell, creating cells that do not exist yet.

        The managed flag is only written when the delta carries one; new cells
        without a flag start as manually managed.
        """
        cells = []
        for delta in deltas:
            stmt = (
                select(BudgetCell)
                .where(
                    BudgetCell.user_id == self.user_id,
                    BudgetCell.category_main == delta.category_main,
                    BudgetCell.subcategory_id == delta.subcategory_id,
                    BudgetCell.period == delta.period,
                )
                .with_for_update()
            )
            cell = self.session.scalar(stmt)
            if cell is None:
                cell = BudgetCell(
                    user_id=self.user_id,
                    category_main=delta.category_main,
                    subcategory_id=delta.subcategory_id,
                    period=delta.period,
                    amount=delta.amount.quantize(AMOUNT_QUANTUM),
                    style=delta.style,
                    managed_automatically=bool(delta.managed_automatically),
                    notes=delta.notes,
                )
                self.session.add(cell)
            else:
                total = Decimal(str(cell.amount)) + delta.amount
                cell.amount = total.quantize(AMOUNT_QUANTUM)
                cell.style = BudgetStyle(delta.style)
                cell.notes = delta.notes
                if delta.managed_automatically is not None:
                    cell.managed_automatically = delta.managed_automatically
            self.session.flush()
            cells.append(cell)
        if commit:
            self.session.commit()
        return cells


class ObligationGroupService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, group_id: int) -> ObligationGroup:
        group = self.session.get(ObligationGroup, group_id)
        if not group or group.user_id != self.user_id:
            raise ValueError("Group not found")
        return group

    def list(self) -> list[ObligationGroup]:
        stmt = (
            select(ObligationGroup)
            .options(
                selectinload(ObligationGroup.obligations).joinedload(
                    PlannedObligation.subcategory
                )
            )
            .where(ObligationGroup.user_id == self.user_id)
            .order_by(ObligationGroup.sort_order, ObligationGroup.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: ObligationGroupIn) -> ObligationGroup:
        sort_order = data.sort_order
        if sort_order is None:
            last = self.session.scalar(
                select(func.max(ObligationGroup.sort_order)).where(
                    ObligationGroup.user_id == self.user_id
                )
            )
            sort_order = 0 if last is None else last + 1
        group = ObligationGroup(
            user_id=self.user_id, name=data.name.strip(), sort_order=sort_order
        )
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        return group

    def update(self, group_id: int, data: ObligationGroupIn) -> ObligationGroup:
        group = self.get(group_id)
        group.name = data.name.strip()
        if data.sort_order is not None:
            group.sort_order = data.sort_order
        self.session.commit()
        self.session.refresh(group)
        return group

    def delete(self, group_id: int) -> None:
        """Delete the group; its obligations stay, ungrouped."""
        group = self.get(group_id)
        self.session.execute(
            update(PlannedObligation)
            .where(PlannedObligation.group_id == group.id)
            .values(group_id=None)
        )
        self.session.delete(group)
        self.session.commit()
        logger.info(f"group_deleted: id={group_id}")

    def reorder(self, group_ids: list[int]) -> list[ObligationGroup]:
        if len(set(group_ids)) != len(group_ids):
            raise ValueError("Duplicate group IDs")
        groups = self.session.scalars(
            select(ObligationGroup).where(
                ObligationGroup.user_id == self.user_id,
                ObligationGroup.id.in_(group_ids),
            )
        ).all()
        if len(groups) != len(group_ids):
            raise ValueError("Some group IDs are invalid")
        by_id = {group.id: group for group in groups}
        for position, group_id in enumerate(group_ids):
            by_id[group_id].sort_order = position
        self.session.commit()
        return self.list()


@dataclass
class MaterializationOutcome:
    obligation_id: int
    success: bool
    transaction_ids: list[int] = field(default_factory=list)
    error: Optional[str] = None


class ObligationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.subcategories = SubcategoryService(session, self.user_id)
        self.budgets = BudgetService(session, self.user_id)
        self.groups = ObligationGroupService(session, self.user_id)

    def get(self, obligation_id: int) -> PlannedObligation:
        record = self.session.get(PlannedObligation, obligation_id)
        if not record or record.user_id != self.user_id:
            raise ValueError("Obligation not found")
        return record

    def list(self, *, active_only: bool = False) -> list[PlannedObligation]:
        stmt = (
            select(PlannedObligation)
            .options(joinedload(PlannedObligation.subcategory))
            .where(PlannedObligation.user_id == self.user_id)
            .order_by(PlannedObligation.next_due_date, PlannedObligation.id)
        )
        if active_only:
            stmt = stmt.where(PlannedObligation.is_active.is_(True))
        return self.session.scalars(stmt).all()

    @staticmethod
    def _options(record: PlannedObligation) -> DistributionOptions:
        return DistributionOptions(
            mode=record.budget_mode or YearlyMode.divide,
            target_month=record.budget_target_month,
        )

    def create(self, data: ObligationIn, today: Optional[date] = None) -> PlannedObligation:
        subcategory = self.subcategories.resolve(
            data.category_main, data.subcategory_id, data.subcategory_name
        )
        group = self.groups.get(data.group_id) if data.group_id is not None else None
        record = PlannedObligation(
            user_id=self.user_id,
            title=data.title,
            category_main=data.category_main,
            subcategory=subcategory,
            subcategory_id=subcategory.id,
            amount_cents=data.amount_cents,
            payee=data.payee,
            note=data.note,
            frequency=data.frequency,
            confirmation_mode=data.confirmation_mode,
            is_active=True,
            start_date=data.start_date,
            end_date=data.end_date,
            group=group,
            next_due_date=initial_due_date(
                data.start_date, data.frequency, today or local_today()
            ),
        )
        self.session.add(record)
        self.session.flush()
        if data.budget is not None:
            self._apply(record, data.budget)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            f"obligation_created: id={record.id} frequency={record.frequency.value} "
            f"next_due_date={record.next_due_date.isoformat()}"
        )
        return record

    def update(
        self, obligation_id: int, data: ObligationIn, today: Optional[date] = None
    ) -> PlannedObligation:
        """Edit an obligation; an applied one is taken out of the budget and put back."""
        record = self.get(obligation_id)
        subcategory = self.subcategories.resolve(
            data.category_main, data.subcategory_id, data.subcategory_name
        )
        group = self.groups.get(data.group_id) if data.group_id is not None else None
        reapply = data.budget
        if record.applied_to_budget and reapply is None:
            reapply = BudgetApplicationIn(
                year=record.budget_year,
                mode=record.budget_mode or YearlyMode.divide,
                target_month=record.budget_target_month,
            )

        schedule_changed = (
            data.frequency != record.frequency or data.start_date != record.start_date
        )
        next_due_date = record.next_due_date
        if schedule_changed:
            next_due_date = initial_due_date(
                data.start_date, data.frequency, today or local_today()
            )

        # The edited obligation must distribute cleanly before the old
        # application is taken out of the budget.
        if reapply is not None and record.is_active:
            edited = Obligation(
                id=record.id,
                amount=Decimal(data.amount_cents) / 100,
                frequency=data.frequency,
                category_main=data.category_main,
                next_due_date=next_due_date,
                start_date=data.start_date,
                confirmation_mode=data.confirmation_mode,
                subcategory_id=subcategory.id,
                subcategory_name=subcategory.name,
                title=data.title,
                end_date=data.end_date,
            )
            distribute(
                edited,
                reapply.year,
                self.subcategories.table(),
                DistributionOptions(mode=reapply.mode, target_month=reapply.target_month),
            )

        try:
            if record.applied_to_budget:
                self._remove(record)
            record.title = data.title
            record.category_main = data.category_main
            record.subcategory = subcategory
            record.subcategory_id = subcategory.id
            record.amount_cents = data.amount_cents
            record.payee = data.payee
            record.note = data.note
            record.frequency = data.frequency
            record.confirmation_mode = data.confirmation_mode
            record.start_date = data.start_date
            record.end_date = data.end_date
            record.group = group
            record.next_due_date = next_due_date
            self.session.flush()

            if reapply is not None and record.is_active:
                self._apply(record, reapply)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        self.session.refresh(record)
        return record

    def move_to_group(
        self, obligation_id: int, group_id: Optional[int]
    ) -> PlannedObligation:
        """Put the obligation in ``group_id``, or take it out of any group with None."""
        record = self.get(obligation_id)
        record.group = self.groups.get(group_id) if group_id is not None else None
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, obligation_id: int) -> None:
        record = self.get(obligation_id)
        if record.applied_to_budget:
            self._remove(record)
        self.session.execute(
            update(Transaction)
            .where(Transaction.origin_obligation_id == record.id)
            .values(origin_obligation_id=None)
        )
        self.session.delete(record)
        self.session.commit()
        logger.info(f"obligation_deleted: id={obligation_id}")

    def set_active(self, obligation_id: int, active: bool) -> PlannedObligation:
        record = self.get(obligation_id)
        snapshot = Obligation.from_record(record)
        if active:
            record.is_active = activate(snapshot).is_active
        else:
            record.is_active = deactivate(snapshot).is_active
            self.session.flush()
            if record.applied_to_budget:
                self._remove(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def apply_to_budget(
        self, obligation_id: int, data: BudgetApplicationIn
    ) -> list[BudgetCellDelta]:
        record = self.get(obligation_id)
        if record.applied_to_budget:
            raise ValueError("Obligation already applied to budget")
        deltas = self._apply(record, data)
        self.session.commit()
        return deltas

    def remove_from_budget(self, obligation_id: int) -> list[BudgetCellDelta]:
        record = self.get(obligation_id)
        if not record.applied_to_budget:
            raise ValueError("Obligation is not applied to budget")
        deltas = self._remove(record)
        self.session.commit()
        return deltas

    def _apply(
        self, record: PlannedObligation, data: BudgetApplicationIn
    ) -> list[BudgetCellDelta]:
        options = DistributionOptions(mode=data.mode, target_month=data.target_month)
        deltas = distribute(
            Obligation.from_record(record),
            data.year,
            self.subcategories.table(),
            options,
        )
        self.budgets.accumulate(deltas, commit=False)
        record.applied_to_budget = True
        record.budget_year = data.year
        record.budget_mode = options.mode
        record.budget_target_month = options.target_month
        return deltas

    def _remove(self, record: PlannedObligation) -> list[BudgetCellDelta]:
        year = record.budget_year
        table = self.subcategories.table()

        def still_managed(category_main, subcategory_name, month_index, excluding_id):
            return self.has_other_active_obligation(
                category_main,
                subcategory_name,
                month_index,
                excluding_id,
                year=year,
                table=table,
            )

        deltas = remove(
            Obligation.from_record(record),
            year,
            table,
            self._options(record),
            still_managed,
        )
        self.budgets.accumulate(deltas, commit=False)
        record.applied_to_budget = False
        record.budget_year = None
        record.budget_mode = None
        record.budget_target_month = None
        return deltas

    def has_other_active_obligation(
        self,
        category_main: CategoryMain,
        subcategory_name: str,
        month_index: int,
        excluding_id: Optional[int],
        *,
        year: int,
        table: Optional[SubcategoryTable] = None,
    ) -> bool:
        """Whether another active, applied obligation still lands in this cell."""
        subcategory = self.subcategories.find_by_name(
            CategoryMain(category_main), subcategory_name
        )
        if subcategory is None:
            return False
        stmt = (
            select(PlannedObligation)
            .options(joinedload(PlannedObligation.subcategory))
            .where(
                PlannedObligation.user_id == self.user_id,
                PlannedObligation.category_main == category_main,
                PlannedObligation.subcategory_id == subcategory.id,
                PlannedObligation.is_active.is_(True),
                PlannedObligation.applied_to_budget.is_(True),
                PlannedObligation.budget_year == year,
            )
        )
        if excluding_id is not None:
            stmt = stmt.where(PlannedObligation.id != excluding_id)
        table = table if table is not None else self.subcategories.table()
        for other in self.session.scalars(stmt).all():
            footprint = budget_footprint(
                Obligation.from_record(other), year, table, self._options(other)
            )
            if any(delta.month_index == month_index for delta in footprint):
                return True
        return False

    def materialize(
        self, obligation_id: int, now: Optional[date] = None
    ) -> Optional[Transaction]:
        """Record the due occurrence as a transaction and advance the schedule."""
        record = self.get(obligation_id)
        txn = self._materialize_record(record, now or local_today())
        self.session.commit()
        self.session.refresh(record)
        return txn

    def _materialize_record(
        self, record: PlannedObligation, today: date
    ) -> Optional[Transaction]:
        snapshot = Obligation.from_record(record)
        result = materialize(snapshot, today)
        updated = result.updated_obligation

        # Compare-and-swap on the due date: a concurrent caller that already
        # consumed this occurrence makes the row count zero.
        swap = self.session.execute(
            update(PlannedObligation)
            .where(
                PlannedObligation.id == record.id,
                PlannedObligation.next_due_date == snapshot.next_due_date,
                PlannedObligation.is_active.is_(True),
            )
            .values(next_due_date=updated.next_due_date, is_active=updated.is_active)
            .execution_options(synchronize_session=False)
        )
        if swap.rowcount != 1:
            self.session.rollback()
            raise IllegalState(
                "Occurrence was already materialized",
                obligation_id=snapshot.id,
                frequency=snapshot.frequency,
                period=period_key(
                    snapshot.next_due_date.year, snapshot.next_due_date.month
                ),
            )
        self.session.expire(record, ["next_due_date", "is_active"])

        txn = self._post_occurrence(record, result.occurrence_date)
        if result.deactivated:
            logger.info(f"obligation_finished: id={record.id}")
        return txn

    def _post_occurrence(
        self, record: PlannedObligation, occurrence_date: date
    ) -> Optional[Transaction]:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.user_id == record.user_id,
                Transaction.origin_obligation_id == record.id,
                Transaction.occurrence_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return None
        txn = Transaction(
            user_id=record.user_id,
            date=occurrence_date,
            amount_cents=record.amount_cents,
            category_main=record.category_main,
            subcategory_id=record.subcategory_id,
            payee=record.payee,
            note=record.note or record.title,
            origin_obligation_id=record.id,
            occurrence_date=occurrence_date,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    def materialize_due(self, now: Optional[date] = None) -> list[MaterializationOutcome]:
        """Post every due occurrence of AUTOMATIC obligations, for all users."""
        today = now or local_today()
        max_iterations = get_settings().max_catch_up
        stmt = (
            select(PlannedObligation.id)
            .where(
                PlannedObligation.is_active.is_(True),
                PlannedObligation.confirmation_mode == ConfirmationMode.automatic,
                PlannedObligation.next_due_date <= today,
            )
            .order_by(PlannedObligation.next_due_date, PlannedObligation.id)
        )
        due_ids = self.session.scalars(stmt).all()

        outcomes = []
        for obligation_id in due_ids:
            outcome = MaterializationOutcome(obligation_id=obligation_id, success=True)
            record = self.session.get(PlannedObligation, obligation_id)
            iterations = 0
            try:
                while is_due(Obligation.from_record(record), today):
                    if iterations >= max_iterations:
                        raise RuntimeError(
                            f"catch-up limit of {max_iterations} occurrences reached"
                        )
                    txn = self._materialize_record(record, today)
                    self.session.commit()
                    if txn is not None:
                        outcome.transaction_ids.append(txn.id)
                    iterations += 1
            except Exception as exc:
                self.session.rollback()
                outcome.success = False
                outcome.error = str(exc)
                logger.warning(
                    f"materialize_failed: obligation={obligation_id} error={exc}"
                )
            outcomes.append(outcome)

        posted = sum(len(o.transaction_ids) for o in outcomes)
        failed = sum(1 for o in outcomes if not o.success)
        logger.info(
            f"materialize_due: obligations={len(outcomes)} posted={posted} failed={failed}"
        )
        return outcomes

    def due_within(
        self, days_ahead: Optional[int] = None, today: Optional[date] = None
    ) -> list[PlannedObligation]:
        if days_ahead is None:
            days_ahead = get_settings().due_lookahead_days
        horizon = (today or local_today()) + timedelta(days=days_ahead)
        stmt = (
            select(PlannedObligation)
            .options(joinedload(PlannedObligation.subcategory))
            .where(
                PlannedObligation.user_id == self.user_id,
                PlannedObligation.is_active.is_(True),
                PlannedObligation.next_due_date <= horizon,
            )
            .order_by(PlannedObligation.next_due_date, PlannedObligation.id)
        )
        return self.session.scalars(stmt).all()

    def upcoming(self, obligation_id: int, count: int = 5) -> list[date]:
        return upcoming_occurrences(
            Obligation.from_record(self.get(obligation_id)), count
        )

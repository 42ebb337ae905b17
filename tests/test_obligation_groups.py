from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import CategoryMain, Frequency, PlannedObligation
from schemas import ObligationGroupIn, ObligationIn, SubcategoryIn
from services import ObligationGroupService, ObligationService, SubcategoryService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    SubcategoryService(session).create(
        SubcategoryIn(category_main=CategoryMain.expense, name="Home")
    )
    return session


def _obligation_in(**overrides) -> ObligationIn:
    fields = dict(
        title="Rent",
        category_main=CategoryMain.expense,
        subcategory_name="Home",
        amount_cents=80000,
        frequency=Frequency.monthly,
        start_date=date(2025, 1, 1),
    )
    fields.update(overrides)
    return ObligationIn(**fields)


def test_create_appends_after_last_group() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)

        first = groups.create(ObligationGroupIn(name="Housing"))
        second = groups.create(ObligationGroupIn(name=" Insurance "))
        pinned = groups.create(ObligationGroupIn(name="Taxes", sort_order=10))
        last = groups.create(ObligationGroupIn(name="Subscriptions"))

        assert (first.sort_order, second.sort_order) == (0, 1)
        assert second.name == "Insurance"
        assert pinned.sort_order == 10
        assert last.sort_order == 11


def test_update_renames_and_keeps_order_unless_given() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        group = groups.create(ObligationGroupIn(name="Housing"))

        renamed = groups.update(group.id, ObligationGroupIn(name="Home"))
        assert (renamed.name, renamed.sort_order) == ("Home", 0)

        moved = groups.update(group.id, ObligationGroupIn(name="Home", sort_order=4))
        assert moved.sort_order == 4

        with pytest.raises(ValueError, match="Group not found"):
            groups.update(999, ObligationGroupIn(name="Nope"))


def test_reorder_follows_given_ids() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        a = groups.create(ObligationGroupIn(name="A"))
        b = groups.create(ObligationGroupIn(name="B"))
        c = groups.create(ObligationGroupIn(name="C"))

        ordered = groups.reorder([c.id, a.id, b.id])

        assert [g.name for g in ordered] == ["C", "A", "B"]
        assert [g.sort_order for g in ordered] == [0, 1, 2]


@pytest.mark.parametrize("bad_ids", [[1, 999], [1, 1]])
def test_reorder_rejects_unknown_or_repeated_ids(bad_ids) -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        groups.create(ObligationGroupIn(name="A"))

        with pytest.raises(ValueError):
            groups.reorder(bad_ids)
        assert groups.get(1).sort_order == 0


def test_list_includes_grouped_obligations() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        housing = groups.create(ObligationGroupIn(name="Housing"))
        service = ObligationService(session)
        rent = service.create(_obligation_in(group_id=housing.id), today=date(2025, 1, 1))
        service.create(_obligation_in(title="Loose"), today=date(2025, 1, 1))

        listed = groups.list()

        assert [g.name for g in listed] == ["Housing"]
        assert [o.id for o in listed[0].obligations] == [rent.id]
        assert listed[0].obligations[0].subcategory.name == "Home"


def test_move_between_groups_and_out() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        housing = groups.create(ObligationGroupIn(name="Housing"))
        bills = groups.create(ObligationGroupIn(name="Bills"))
        service = ObligationService(session)
        record = service.create(
            _obligation_in(group_id=housing.id), today=date(2025, 1, 1)
        )

        assert service.move_to_group(record.id, bills.id).group_id == bills.id
        assert service.move_to_group(record.id, None).group_id is None
        with pytest.raises(ValueError, match="Group not found"):
            service.move_to_group(record.id, 999)


def test_obligation_with_unknown_group_is_rejected() -> None:
    with _session() as session:
        with pytest.raises(ValueError, match="Group not found"):
            ObligationService(session).create(
                _obligation_in(group_id=42), today=date(2025, 1, 1)
            )


def test_delete_group_keeps_its_obligations() -> None:
    with _session() as session:
        groups = ObligationGroupService(session)
        housing = groups.create(ObligationGroupIn(name="Housing"))
        record = ObligationService(session).create(
            _obligation_in(group_id=housing.id), today=date(2025, 1, 1)
        )

        groups.delete(housing.id)

        assert groups.list() == []
        survivor = session.get(PlannedObligation, record.id)
        assert survivor is not None
        assert survivor.group_id is None

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from distribution import DistributionOptions, distribute, resolve_subcategory
from models import BudgetStyle, CategoryMain, Frequency, YearlyMode
from obligations import (
    IllegalState,
    MissingStartDate,
    Obligation,
    SubcategoryEntry,
    SubcategoryUnresolved,
    UnsupportedFrequency,
    YearMismatch,
)

TABLE = {
    "EXPENSE": [
        SubcategoryEntry(id=7, name="Rent"),
        SubcategoryEntry(id=8, name="Insurance"),
        SubcategoryEntry(id=9, name="Other"),
    ],
    "INCOME": [
        SubcategoryEntry(id=20, name="Salary"),
        SubcategoryEntry(id=21, name="Other"),
    ],
}

TOLERANCE = Decimal("1e-9")


def _obligation(frequency: Frequency, amount: str = "100", **overrides) -> Obligation:
    fields = dict(
        id=42,
        amount=Decimal(amount),
        frequency=frequency,
        category_main=CategoryMain.expense,
        start_date=date(2025, 3, 15),
        next_due_date=date(2025, 3, 15),
        subcategory_id=7,
        title="Flat",
    )
    fields.update(overrides)
    return Obligation(**fields)


def _total(deltas) -> Decimal:
    return sum((d.amount for d in deltas), Decimal(0))


def test_monthly_fills_every_month_with_full_amount():
    deltas = distribute(_obligation(Frequency.monthly, "100"), 2025, TABLE)

    assert [d.period for d in deltas] == [f"2025-{m:02d}" for m in range(1, 13)]
    assert all(d.amount == Decimal("100") for d in deltas)
    assert all(d.style == BudgetStyle.fixed for d in deltas)
    assert all(d.managed_automatically is True for d in deltas)
    assert all(d.subcategory_id == 7 for d in deltas)
    assert all(d.category_main == CategoryMain.expense for d in deltas)


def test_quarterly_spreads_each_quarter_over_its_three_months():
    deltas = distribute(_obligation(Frequency.quarterly, "300"), 2025, TABLE)

    assert len(deltas) == 12
    assert all(d.amount == Decimal("100") for d in deltas)
    quarters = [deltas[i : i + 3] for i in range(0, 12, 3)]
    assert [[d.period for d in q] for q in quarters] == [
        ["2025-01", "2025-02", "2025-03"],
        ["2025-04", "2025-05", "2025-06"],
        ["2025-07", "2025-08", "2025-09"],
        ["2025-10", "2025-11", "2025-12"],
    ]


def test_yearly_specific_targets_zero_based_month():
    options = DistributionOptions(mode=YearlyMode.specific, target_month=5)
    deltas = distribute(_obligation(Frequency.yearly, "1200"), 2025, TABLE, options)

    assert len(deltas) == 1
    assert deltas[0].period == "2025-06"
    assert deltas[0].amount == Decimal("1200")


def test_yearly_specific_without_target_uses_start_month():
    options = DistributionOptions(mode="specific")
    deltas = distribute(_obligation(Frequency.yearly, "1200"), 2025, TABLE, options)

    assert [d.period for d in deltas] == ["2025-03"]


def test_yearly_specific_without_target_or_start_date_fails():
    options = DistributionOptions(mode=YearlyMode.specific)
    obligation = _obligation(Frequency.yearly, "1200", start_date=None)

    with pytest.raises(MissingStartDate):
        distribute(obligation, 2025, TABLE, options)


def test_yearly_defaults_to_dividing_over_twelve_months():
    deltas = distribute(_obligation(Frequency.yearly, "1200"), 2025, TABLE)

    assert len(deltas) == 12
    assert all(d.amount == Decimal("100") for d in deltas)


def test_weekly_uses_monthly_equivalent_of_fifty_two_weeks():
    deltas = distribute(_obligation(Frequency.weekly, "50"), 2025, TABLE)

    assert len(deltas) == 12
    expected = Decimal(50) * 52 / 12
    for delta in deltas:
        assert delta.amount == expected
        assert abs(float(delta.amount) - 216.6666666666) < 1e-6


def test_semiannual_spreads_over_whole_year():
    deltas = distribute(_obligation(Frequency.semiannual, "600"), 2025, TABLE)

    assert len(deltas) == 12
    assert all(d.amount == Decimal("100") for d in deltas)


@pytest.mark.parametrize(
    "frequency,multiplier",
    [
        (Frequency.monthly, 12),
        (Frequency.quarterly, 4),
        (Frequency.semiannual, 2),
        (Frequency.yearly, 1),
    ],
)
def test_yearly_total_matches_frequency(frequency, multiplier):
    amount = Decimal("123.47")
    deltas = distribute(_obligation(frequency, str(amount)), 2025, TABLE)

    assert abs(_total(deltas) - amount * multiplier) < TOLERANCE


def test_one_time_lands_in_start_month():
    obligation = _obligation(Frequency.one_time, "80", start_date=date(2025, 11, 2))
    deltas = distribute(obligation, 2025, TABLE)

    assert [(d.period, d.amount) for d in deltas] == [("2025-11", Decimal("80"))]


def test_one_time_outside_target_year_is_rejected():
    obligation = _obligation(Frequency.one_time, "80", start_date=date(2024, 11, 2))

    with pytest.raises(YearMismatch) as excinfo:
        distribute(obligation, 2025, TABLE)
    assert excinfo.value.obligation_id == 42
    assert excinfo.value.period == "2024-11"


def test_one_time_without_start_date_is_rejected():
    with pytest.raises(MissingStartDate):
        distribute(_obligation(Frequency.one_time, start_date=None), 2025, TABLE)


def test_negative_amount_is_distributed_by_magnitude():
    deltas = distribute(_obligation(Frequency.monthly, "-45.50"), 2025, TABLE)

    assert all(d.amount == Decimal("45.50") for d in deltas)


def test_missing_subcategory_reference_is_an_error():
    obligation = _obligation(Frequency.monthly, subcategory_id=None)

    with pytest.raises(SubcategoryUnresolved):
        distribute(obligation, 2025, TABLE)


def test_unknown_subcategory_id_is_an_error():
    obligation = _obligation(Frequency.monthly, subcategory_id=999)

    with pytest.raises(SubcategoryUnresolved) as excinfo:
        distribute(obligation, 2025, TABLE)
    assert "obligation=42" in str(excinfo.value)


def test_dangling_id_is_an_error_even_with_a_name():
    obligation = _obligation(
        Frequency.monthly, subcategory_id=999, subcategory_name="Rent"
    )

    with pytest.raises(SubcategoryUnresolved, match="999"):
        distribute(obligation, 2025, TABLE)


def test_id_and_name_must_agree():
    obligation = _obligation(
        Frequency.monthly, subcategory_id=7, subcategory_name="Insurance"
    )

    with pytest.raises(SubcategoryUnresolved):
        distribute(obligation, 2025, TABLE)


def test_id_with_matching_name_resolves_to_stored_name():
    obligation = _obligation(
        Frequency.monthly, subcategory_id=7, subcategory_name="rent"
    )

    assert resolve_subcategory(obligation, TABLE) == (7, "Rent")


def test_subcategory_name_is_resolved_case_insensitively():
    obligation = _obligation(
        Frequency.monthly, subcategory_id=None, subcategory_name="  insurance "
    )

    assert resolve_subcategory(obligation, TABLE) == (8, "Insurance")
    assert {d.subcategory_id for d in distribute(obligation, 2025, TABLE)} == {8}


def test_subcategory_name_prefers_own_main_category():
    income = _obligation(
        Frequency.monthly,
        category_main=CategoryMain.income,
        subcategory_id=None,
        subcategory_name="other",
    )
    expense = replace(income, category_main=CategoryMain.expense)

    assert resolve_subcategory(income, TABLE) == (21, "Other")
    assert resolve_subcategory(expense, TABLE) == (9, "Other")


def test_unknown_frequency_is_never_defaulted():
    obligation = _obligation("BIWEEKLY")

    with pytest.raises(UnsupportedFrequency) as excinfo:
        distribute(obligation, 2025, TABLE)
    assert excinfo.value.frequency == "BIWEEKLY"


def test_inactive_obligation_is_not_distributed():
    with pytest.raises(IllegalState):
        distribute(_obligation(Frequency.monthly, is_active=False), 2025, TABLE)


def test_distribution_is_deterministic():
    obligation = _obligation(Frequency.weekly, "19.99")

    first = distribute(obligation, 2026, TABLE)
    second = distribute(obligation, 2026, TABLE)

    assert first == second
    assert [d.as_dict() for d in first] == [d.as_dict() for d in second]


def test_notes_name_the_source_obligation():
    delta = distribute(_obligation(Frequency.monthly), 2025, TABLE)[0]

    assert "42" in delta.notes
    assert "Flat" in delta.notes
    assert delta.as_dict()["managed_automatically"] is True
    assert delta.as_dict()["style"] == "FIXED"


def test_target_month_out_of_range_is_rejected():
    with pytest.raises(ValueError):
        DistributionOptions(mode=YearlyMode.specific, target_month=12)

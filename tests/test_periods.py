from datetime import date

import pytest

from periods import Period, parse_period_key, period_key, period_of, periods_of_year


def test_period_key_is_zero_padded():
    assert period_key(2025, 1) == "2025-01"
    assert period_key(987, 12) == "0987-12"


@pytest.mark.parametrize("month", [0, 13])
def test_period_key_rejects_bad_month(month):
    with pytest.raises(ValueError):
        period_key(2025, month)


@pytest.mark.parametrize("key", ["2025-1", "25-01", "2025/01", "2025-13", "abcd-01", ""])
def test_parse_period_key_rejects_malformed(key):
    with pytest.raises(ValueError):
        parse_period_key(key)


def test_parse_period_key_round_trips_fields():
    period = parse_period_key("2024-02")

    assert period == Period(2024, 2)
    assert period.month_index == 1
    assert period.start == date(2024, 2, 1)
    assert period.end == date(2024, 2, 29)
    assert Period(2024, 12).end == date(2024, 12, 31)


def test_year_helpers():
    assert [p.key for p in periods_of_year(2025)][:2] == ["2025-01", "2025-02"]
    assert len(periods_of_year(2025)) == 12
    assert period_of(date(2025, 7, 19)).key == "2025-07"

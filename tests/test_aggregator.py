from datetime import date

import pytest

from crm2_bot.aggregator import card_summary, sum_window, summarize, usd_value, window_bounds
from crm2_bot.models import BufferCardRow, CardRow, ExpenseRecord, IncomeRecord

TODAY = date(2024, 3, 15)
RATES = {"USD": 1.0, "EUR": 1.1, "UAH": 0.025, "KZT": None}


def expense(row, when, amount, currency="USD", usd=None):
    return ExpenseRecord(row_number=row, date=when, amount=amount, currency=currency, usd=usd)


def test_free_slots_example():
    cards = [CardRow(total_slots=10, used_slots=7), CardRow(total_slots=5, used_slots=5)]
    assert card_summary(cards, []).free_slots == 3


def test_overused_card_does_not_go_negative():
    cards = [CardRow(total_slots=2, used_slots=4), CardRow(total_slots=3, used_slots=1)]
    assert card_summary(cards, []).free_slots == 2


def test_reissue_counts_both_spellings():
    cards = [CardRow(status=s) for s in ["К перевыпуску", "Перевыпуск", "OK"]]
    assert card_summary(cards, []).reissue_count == 2


def test_reissue_status_is_case_and_space_insensitive():
    cards = [CardRow(status="  к ПЕРЕВЫПУСКУ ")]
    assert card_summary(cards, []).reissue_count == 1


def test_free_buffer_and_holds():
    cards = [CardRow(holds=10.105), CardRow(holds=0.0), CardRow(holds=5.5)]
    buffer = [BufferCardRow(status="Свободна"), BufferCardRow(status="свободна"), BufferCardRow(status="Занята")]
    summary = card_summary(cards, buffer)
    assert summary.free_buffer == 2
    assert summary.holds_sum == pytest.approx(15.61, abs=0.01)
    assert not summary.is_empty


def test_empty_tables_give_zero_summary():
    summary = card_summary([], [])
    assert summary.free_slots == 0
    assert summary.free_buffer == 0
    assert summary.holds_sum == 0
    assert summary.reissue_count == 0
    assert summary.is_empty


def test_usd_value_prefers_sheet_value():
    assert usd_value(expense(2, TODAY, 100, "EUR", usd=105.0), RATES) == 105.0
    assert usd_value(expense(2, TODAY, 100, "EUR"), RATES) == pytest.approx(110.0)
    assert usd_value(expense(2, TODAY, 100, "KZT"), RATES) == 0.0
    assert usd_value(expense(2, TODAY, 100, "GBP"), RATES) == 0.0


def test_window_bounds():
    assert window_bounds("day", TODAY) == (date(2024, 3, 15), date(2024, 3, 16))
    assert window_bounds("week", TODAY) == (date(2024, 3, 9), date(2024, 3, 16))
    assert window_bounds("month", TODAY) == (date(2024, 3, 1), date(2024, 3, 16))
    assert window_bounds("all", TODAY) == (None, None)
    with pytest.raises(ValueError):
        window_bounds("year", TODAY)


def test_sum_window_filters_dates_and_skips_undated_rows():
    records = [
        expense(2, date(2024, 3, 15), 10),
        expense(3, date(2024, 3, 10), 20),
        expense(4, date(2024, 2, 28), 40),
        expense(5, None, 1000),
        expense(6, date(2024, 3, 16), 80),
    ]
    assert sum_window(records, RATES, *window_bounds("day", TODAY)).total == 10
    week = sum_window(records, RATES, *window_bounds("week", TODAY))
    assert (week.total, week.count) == (30, 2)
    everything = sum_window(records, RATES)
    assert (everything.total, everything.count) == (150, 4)


def test_summarize_counts_only_received_income():
    expenses = [expense(2, date(2024, 3, 14), 50), expense(3, date(2024, 3, 15), 25)]
    incomes = [
        IncomeRecord(row_number=2, date=date(2024, 3, 2), status="Получено", amount=200, currency="USD"),
        IncomeRecord(row_number=3, date=date(2024, 3, 3), status="Ожидает", amount=500, currency="USD"),
        IncomeRecord(row_number=4, date=date(2024, 2, 3), status="получено", amount=900, currency="USD"),
    ]
    summary = summarize(expenses, incomes, RATES, TODAY)
    assert summary.today.total == 25
    assert summary.month.total == 75
    assert summary.income_month == 200
    assert summary.net_month == 125


def test_slash_dated_rows_land_in_their_month():
    rows = [
        ["3/1/2024", "Card", "Реклама", "UA", "10", "USD", "", ""],
        ["3/14/2024", "Card", "Реклама", "UA", "20", "USD", "", ""],
        ["2/29/2024", "Card", "Реклама", "UA", "40", "USD", "", ""],
    ]
    records = [ExpenseRecord.from_row(i + 2, row) for i, row in enumerate(rows)]
    month = sum_window(records, RATES, *window_bounds("month", TODAY))
    assert (month.total, month.count) == (30.0, 2)

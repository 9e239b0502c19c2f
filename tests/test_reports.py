import pytest

from conftest import FakeSheetsClient, TODAY
from crm2_bot.models import CardSummary, WindowStats
from crm2_bot.reports import CardReport, ExpenseStats, render_card_status, render_window
from crm2_bot.store import EntryStore


def test_render_warns_below_thresholds():
    text = render_card_status(CardSummary(free_slots=2, free_buffer=1, holds_sum=12.5, reissue_count=1), 5, 3)
    assert "Свободные слоты: *2*" in text
    assert "Зависшие холды: *$12.50*" in text
    assert "Мало свободных слотов: 2 (< 5)" in text
    assert "Мало свободных буферок: 1 (< 3)" in text


def test_render_without_warnings():
    text = render_card_status(CardSummary(free_slots=10, free_buffer=4), 5, 3)
    assert "⚠️" not in text
    assert "ℹ️" not in text


def test_render_empty_table_is_informational():
    text = render_card_status(CardSummary(is_empty=True), 5, 3)
    assert "Таблица пустая" in text
    assert "⚠️" not in text


def test_render_window():
    assert render_window("week", WindowStats(total=30, count=2)) == "Расходы за 7 дней: $30.00 (записей: 2)"


def _card_store(settings, used="7"):
    client = FakeSheetsClient({
        "Карты": [["Слоты всего", "Слоты занято", "Холды $", "Статус"], ["10", used, "0", "OK"]],
        "Буферки": [["Статус"], ["Свободна"]],
    })
    return client, EntryStore(client, settings)


@pytest.mark.asyncio
async def test_card_report_caches_until_forced(settings):
    client, store = _card_store(settings)
    report = CardReport(store, 5, 3)
    assert (await report.summary()).free_slots == 3

    client.sheets["Карты"][1][1] = "9"
    assert (await report.summary()).free_slots == 3
    assert (await report.summary(force=True)).free_slots == 1


@pytest.mark.asyncio
async def test_card_report_per_subscriber_thresholds(settings):
    _, store = _card_store(settings)
    report = CardReport(store, 5, 3)
    summary = await report.summary()
    assert "⚠️" in report.render(summary)
    assert "⚠️" not in report.render(summary, min_slots=1, min_buffer=1)


@pytest.mark.asyncio
async def test_expense_stats_uses_rates(store, sheets):
    sheets.sheets["Расходы"] += [
        ["15.03.2024", "Card", "Реклама", "UA", "100", "EUR", "", ""],
        ["14.03.2024", "Card", "Реклама", "UA", "4000", "UAH", "", ""],
        ["15.03.2024", "Card", "Реклама", "UA", "5", "USD", "5", ""],
    ]
    stats = ExpenseStats(store)
    day = await stats.window("day", TODAY)
    assert day.total == pytest.approx(115.0)
    assert day.count == 2
    summary = await stats.summary(TODAY)
    assert summary.week.total == pytest.approx(215.0)
    assert summary.income_month == 0

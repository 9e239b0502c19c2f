from datetime import date

import pytest

from conftest import FakeSheetsClient
from crm2_bot.aggregator import card_summary
from crm2_bot.errors import ReferenceListEmpty, StoreError
from crm2_bot.models import ExpenseEntry, IncomeEntry
from crm2_bot.store import EntryStore


def make_expense(payee="Card", amount=10.0):
    return ExpenseEntry(
        date=date(2024, 3, 15), payee=payee, category="Реклама",
        geo="UA", amount=amount, currency="USD", comment="",
    )


def make_income():
    return IncomeEntry(
        date=date(2024, 3, 15), status="Получено", income_type="Депозит",
        amount=100.0, currency="USD", comment="март",
    )


@pytest.mark.asyncio
async def test_reference_lists(store):
    assert await store.get_types() == ["Реклама", "Прокси", "Аккаунты"]
    assert await store.get_currencies() == ["USD", "EUR", "UAH"]
    rates = await store.get_rates()
    assert rates["EUR"] == pytest.approx(1.1)


@pytest.mark.asyncio
async def test_reference_lists_are_cached_until_forced(store, sheets):
    await store.get_types()
    sheets.sheets["Справочники"].append(["Сервера"])
    assert "Сервера" not in await store.get_types()
    assert "Сервера" in await store.get_types(force=True)


@pytest.mark.asyncio
async def test_empty_currency_list_is_an_error(settings):
    store = EntryStore(FakeSheetsClient({"Курсы": [["Валюта", "USD"]]}), settings)
    with pytest.raises(ReferenceListEmpty):
        await store.get_currencies()


@pytest.mark.asyncio
async def test_append_expense_records_row_and_meta(store, sheets):
    row = await store.append_expense(42, make_expense())
    assert row == 2
    assert sheets.sheets["Расходы"][1] == ["15.03.2024", "Card", "Реклама", "UA", 10.0, "USD", "", ""]
    meta = sheets.sheets["BotMeta"]
    assert meta[0] == ["user_id", "row", "ts", "sheet"]
    assert meta[1][0] == "42"
    assert meta[1][1] == 2
    assert meta[1][3] == "Расходы"


@pytest.mark.asyncio
async def test_undo_without_entries(store):
    result = await store.undo_last(42)
    assert not result.ok
    assert result.reason == "Нет записей для отмены."


@pytest.mark.asyncio
async def test_undo_removes_latest_entry_of_the_user(store, sheets):
    await store.append_expense("1", make_expense(payee="first"))
    await store.append_expense("2", make_expense(payee="second"))
    await store.append_income("1", make_income())

    result = await store.undo_last("1")
    assert (result.ok, result.row, result.sheet) == (True, 2, "Доходы")
    assert len(sheets.sheets["Доходы"]) == 1

    result = await store.undo_last("1")
    assert (result.ok, result.row, result.sheet) == (True, 2, "Расходы")
    assert [r[1] for r in sheets.sheets["Расходы"][1:]] == ["second"]

    # user 2's row moved up from 3 to 2; undo must follow it
    result = await store.undo_last("2")
    assert (result.ok, result.row) == (True, 2)
    assert sheets.sheets["Расходы"] == [sheets.sheets["Расходы"][0]]
    assert len(sheets.sheets["BotMeta"]) == 1



@pytest.mark.asyncio
async def test_failed_undo_leaves_other_users_rows_alone(store, sheets):
    await store.append_expense("1", make_expense(payee="mine"))
    await store.append_expense("2", make_expense(payee="theirs"))

    real_edit = sheets.batch_edit
    calls = []

    def flaky_edit(cell_updates, row_deletions):
        calls.append(row_deletions)
        if len(calls) == 1:
            raise StoreError("connection reset")
        return real_edit(cell_updates, row_deletions)

    sheets.batch_edit = flaky_edit
    with pytest.raises(StoreError):
        await store.undo_last("1")
    assert [r[1] for r in sheets.sheets["Расходы"][1:]] == ["mine", "theirs"]
    assert len(sheets.sheets["BotMeta"]) == 3

    result = await store.undo_last("1")
    assert (result.ok, result.row) == (True, 2)
    assert [r[1] for r in sheets.sheets["Расходы"][1:]] == ["theirs"]

    # a second undo by the same user finds nothing and must not touch user 2's row
    assert not (await store.undo_last("1")).ok
    assert [r[1] for r in sheets.sheets["Расходы"][1:]] == ["theirs"]
    assert sheets.sheets["BotMeta"][1][:2] == ["2", 2]

@pytest.mark.asyncio
async def test_load_expenses_decodes_rows(store, sheets):
    sheets.sheets["Расходы"] += [
        ["01.03.2024", "Card", "Реклама", "UA", "12,5", "eur", "13,75", ""],
        ["битая дата", "Card", "Реклама", "UA", "abc", "USD", "", ""],
    ]
    first, second = await store.load_expenses()
    assert first.row_number == 2
    assert first.date == date(2024, 3, 1)
    assert first.amount == 12.5
    assert first.currency == "EUR"
    assert first.usd == 13.75
    assert second.date is None
    assert second.amount == 0.0
    assert second.usd is None


@pytest.mark.asyncio
async def test_load_cards_by_header(settings):
    client = FakeSheetsClient({
        "Карты": [
            ["Карта", "Статус", "Слоты занято", "Слоты всего", "Холды $"],
            ["4441", "OK", "7", "10", "12,5"],
            ["4442", "Перевыпуск", "5", "5", ""],
        ],
        "Буферки": [["Карта", "Статус"], ["5551", "Свободна"], ["5552", "Занята"]],
    })
    store = EntryStore(client, settings)
    cards = await store.load_cards()
    assert [(c.total_slots, c.used_slots, c.holds, c.status) for c in cards] == [
        (10, 7, 12.5, "OK"),
        (5, 5, 0.0, "Перевыпуск"),
    ]
    buffer = await store.load_buffer_cards()
    assert [b.status for b in buffer] == ["Свободна", "Занята"]


@pytest.mark.asyncio
async def test_cards_without_slot_columns_count_as_data(settings):
    client = FakeSheetsClient({
        "Карты": [["Карта", "Статус"], ["1", "К перевыпуску"]],
        "Буферки": [["Карта"]],
    })
    store = EntryStore(client, settings)
    cards = await store.load_cards()
    assert [(c.total_slots, c.used_slots, c.holds, c.status) for c in cards] == [(0, 0, 0.0, "")]

    summary = card_summary(cards, await store.load_buffer_cards())
    assert not summary.is_empty
    assert summary.reissue_count == 0

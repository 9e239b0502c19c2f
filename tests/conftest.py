import re
from datetime import date

import pytest

from crm2_bot.config import Settings
from crm2_bot.errors import StoreError
from crm2_bot.parsing import ReferencePolicy
from crm2_bot.sessions import SessionRepository
from crm2_bot.store import EntryStore
from crm2_bot.subscribers import SubscriberRegistry
from crm2_bot.wizard import Wizard

TODAY = date(2024, 3, 15)

_CELL_RE = re.compile(r"^([A-Z]+)?(\d+)?")


def _parse_cell(ref: str) -> tuple[int, int]:
    """'B7' -> (col 1, row 7); missing parts default to column A / row 1."""
    match = _CELL_RE.match(ref or "")
    letters, digits = match.group(1), match.group(2)
    col = 0
    if letters:
        for ch in letters:
            col = col * 26 + (ord(ch) - ord("A") + 1)
        col -= 1
    return col, int(digits) if digits else 1


class FakeSheetsClient:
    """In-memory stand-in for SheetsClient with the same method surface."""

    def __init__(self, sheets: dict | None = None):
        self.sheets = {name: [list(r) for r in rows] for name, rows in (sheets or {}).items()}

    def _rows(self, sheet_name: str) -> list[list]:
        if sheet_name not in self.sheets:
            raise StoreError(f"Unable to parse range: {sheet_name}")
        return self.sheets[sheet_name]

    def _used(self, sheet_name: str) -> list[list]:
        rows = self._rows(sheet_name)
        end = len(rows)
        while end and not any(str(c).strip() for c in rows[end - 1]):
            end -= 1
        return rows[:end]

    def get_values(self, sheet_name: str, range_str: str = "") -> list[list]:
        _, start = _parse_cell(range_str.split(":")[0]) if range_str else (0, 1)
        return [list(r) for r in self._used(sheet_name)[start - 1:]]

    def read_table(self, sheet_name: str):
        values = self.get_values(sheet_name)
        if not values:
            return [], []
        return [str(h).strip() for h in values[0]], values[1:]

    def append_rows(self, sheet_name, range_str, rows, value_input_option="USER_ENTERED"):
        used = self._used(sheet_name)
        first = len(used) + 1
        self.sheets[sheet_name] = used + [list(r) for r in rows]
        return first

    def update_values(self, sheet_name, range_str, rows, value_input_option="RAW"):
        sheet = self._rows(sheet_name)
        col0, row0 = _parse_cell(range_str.split(":")[0])
        for r_offset, values in enumerate(rows):
            index = row0 - 1 + r_offset
            while len(sheet) <= index:
                sheet.append([])
            line = sheet[index]
            for c_offset, value in enumerate(values):
                col = col0 + c_offset
                while len(line) <= col:
                    line.append("")
                line[col] = value

    def sheet_ids(self):
        return {name: i for i, name in enumerate(self.sheets)}

    def add_sheet(self, title):
        self.sheets[title] = []

    def batch_edit(self, cell_updates, row_deletions):
        # All-or-nothing like the real batchUpdate: validate before touching anything
        for name in [u[0] for u in cell_updates] + [d[0] for d in row_deletions]:
            self._rows(name)
        for name, cell, value in cell_updates:
            self.update_values(name, cell, [[value]])
        for name, row in row_deletions:
            del self.sheets[name][row - 1:row]


@pytest.fixture
def settings():
    return Settings(
        telegram_bot_token="123456:TEST",
        spreadsheet_id="spreadsheet",
        google_service_account_file="service_account.json",
        threshold_slots=5,
        threshold_buffer_free=3,
    )


@pytest.fixture
def sheets():
    return FakeSheetsClient({
        "Расходы": [["Дата", "Платёжка", "Тип", "GEO", "Сумма", "Валюта", "USD", "Комментарий"]],
        "Доходы": [["Дата", "Статус", "Тип", "Сумма", "Валюта", "USD", "Комментарий"]],
        "Справочники": [["Тип"], ["Реклама"], ["Прокси"], ["Аккаунты"]],
        "Курсы": [["Валюта", "USD"], ["USD", "1"], ["EUR", "1,1"], ["UAH", "0,025"]],
    })


@pytest.fixture
def store(sheets, settings):
    return EntryStore(sheets, settings)


@pytest.fixture
def registry(sheets, settings):
    return SubscriberRegistry(sheets, settings)


@pytest.fixture
def wizard(store):
    return Wizard(store, SessionRepository(), ReferencePolicy(), today=lambda: TODAY)

"""Async repository over the spreadsheet: reference lists, entries, undo and card sheets."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from crm2_bot.cache import TTLCache
from crm2_bot.config import Settings
from crm2_bot.errors import ReferenceListEmpty
from crm2_bot.models import (
    META_COLUMNS,
    BufferCardRow,
    CardRow,
    ExpenseEntry,
    ExpenseRecord,
    IncomeEntry,
    IncomeRecord,
    MetaRecord,
    UndoResult,
)
from crm2_bot.parsing import parse_int, parse_number
from crm2_bot.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

# Card sheet headers
CARD_TOTAL = "Слоты всего"
CARD_USED = "Слоты занято"
CARD_HOLDS = "Холды $"
CARD_STATUS = "Статус"


def _column(header: list[str], name: str) -> Optional[int]:
    try:
        return header.index(name)
    except ValueError:
        return None


def _value(row: list, index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return str(row[index]).strip()


class EntryStore:
    def __init__(self, client: SheetsClient, settings: Settings, cache: Optional[TTLCache] = None):
        self.client = client
        self.settings = settings
        self.cache = cache or TTLCache(default_ttl=settings.reference_cache_ttl)
        self._meta_ready = False

    async def _call(self, fn, *args):
        # googleapiclient blocks; keep the event loop free while it runs
        return await asyncio.to_thread(fn, *args)

    # ── Reference lists ──────────────────────────────────────────────────

    async def get_types(self, force: bool = False) -> list[str]:
        if not force:
            cached = self.cache.get("types")
            if cached is not None:
                return cached
        values = await self._call(self.client.get_values, self.settings.sheet_types, "A2:A")
        types = [str(r[0]).strip() for r in values if r and str(r[0]).strip()]
        self.cache.set("types", types)
        return types

    async def get_rates(self, force: bool = False) -> dict[str, Optional[float]]:
        """Currency code -> USD value of one unit (None when the rate cell is blank)."""
        if not force:
            cached = self.cache.get("rates")
            if cached is not None:
                return cached
        values = await self._call(self.client.get_values, self.settings.sheet_rates, "A2:B")
        rates: dict[str, Optional[float]] = {}
        for row in values:
            code = _value(row, 0).upper()
            if not code:
                continue
            rate = parse_number(_value(row, 1))
            rates[code] = rate if rate > 0 else None
        self.cache.set("rates", rates)
        return rates

    async def get_currencies(self, force: bool = False) -> list[str]:
        currencies = list(await self.get_rates(force=force))
        if not currencies:
            raise ReferenceListEmpty(
                f"В «{self.settings.sheet_rates}» нет списка валют. Заполни A2:A (USD, EUR, …)."
            )
        return currencies

    # ── Appending entries ────────────────────────────────────────────────

    async def ensure_meta_sheet(self):
        if self._meta_ready:
            return
        meta = self.settings.sheet_meta
        titles = await self._call(self.client.sheet_ids)
        if meta not in titles:
            await self._call(self.client.add_sheet, meta)
        await self._call(self.client.update_values, meta, "A1:D1", [META_COLUMNS])
        self._meta_ready = True

    async def _append_entry(self, user_id, sheet: str, range_str: str, row: list) -> Optional[int]:
        row_number = await self._call(self.client.append_rows, sheet, range_str, [row])
        await self.ensure_meta_sheet()
        if row_number:
            await self._call(
                self.client.append_rows,
                self.settings.sheet_meta,
                "A:D",
                [[str(user_id), row_number, datetime.now(timezone.utc).isoformat(), sheet]],
                "RAW",
            )
        logger.info(f"User {user_id} appended row {row_number} to {sheet}")
        return row_number

    async def append_expense(self, user_id, entry: ExpenseEntry) -> Optional[int]:
        return await self._append_entry(user_id, self.settings.sheet_expenses, "A:H", entry.to_row())

    async def append_income(self, user_id, entry: IncomeEntry) -> Optional[int]:
        return await self._append_entry(user_id, self.settings.sheet_income, "A:G", entry.to_row())

    # ── Undo ─────────────────────────────────────────────────────────────

    async def load_meta(self) -> list[MetaRecord]:
        values = await self._call(self.client.get_values, self.settings.sheet_meta, "A:D")
        return [MetaRecord.from_row(i + 2, row) for i, row in enumerate(values[1:]) if row]

    async def undo_last(self, user_id) -> UndoResult:
        """Delete the most recent row the user appended, in whichever sheet it lives."""
        await self.ensure_meta_sheet()
        meta = await self.load_meta()
        mine = [m for m in meta if m.user_id == str(user_id)]
        if not mine:
            return UndoResult(ok=False, reason="Нет записей для отмены.")
        last = mine[-1]
        sheet = last.sheet or self.settings.sheet_expenses
        if last.row <= 1:
            return UndoResult(ok=False, reason="Некорректный номер строки.")

        # Entries below the deleted one move up by one row, so their pointers do too.
        # Pointer updates and both deletions go out as one batch: a failure leaves
        # the sheets untouched and the meta line still matches its row.
        meta_sheet = self.settings.sheet_meta
        shifted = [
            (meta_sheet, f"B{m.row_number}", m.row - 1)
            for m in meta
            if m is not last and (m.sheet or self.settings.sheet_expenses) == sheet and m.row > last.row
        ]
        await self._call(
            self.client.batch_edit,
            shifted,
            [(meta_sheet, last.row_number), (sheet, last.row)],
        )

        logger.info(f"User {user_id} undid row {last.row} in {sheet}")
        return UndoResult(ok=True, row=last.row, sheet=sheet)

    # ── Reading ledgers ──────────────────────────────────────────────────

    async def load_expenses(self) -> list[ExpenseRecord]:
        values = await self._call(self.client.get_values, self.settings.sheet_expenses, "A2:H")
        return [ExpenseRecord.from_row(i + 2, row) for i, row in enumerate(values) if row]

    async def load_incomes(self) -> list[IncomeRecord]:
        values = await self._call(self.client.get_values, self.settings.sheet_income, "A2:G")
        return [IncomeRecord.from_row(i + 2, row) for i, row in enumerate(values) if row]

    # ── Card sheets ──────────────────────────────────────────────────────

    async def load_cards(self) -> list[CardRow]:
        header, rows = await self._call(self.client.read_table, self.settings.sheet_cards)
        i_total = _column(header, CARD_TOTAL)
        i_used = _column(header, CARD_USED)
        if i_total is None or i_used is None:
            # Rows still count toward "sheet has data"; they contribute nothing
            return [CardRow() for row in rows if row]
        i_holds = _column(header, CARD_HOLDS)
        i_status = _column(header, CARD_STATUS)
        return [
            CardRow(
                total_slots=parse_int(_value(row, i_total)),
                used_slots=parse_int(_value(row, i_used)),
                holds=parse_number(_value(row, i_holds)),
                status=_value(row, i_status),
            )
            for row in rows
            if row
        ]

    async def load_buffer_cards(self) -> list[BufferCardRow]:
        header, rows = await self._call(self.client.read_table, self.settings.sheet_buffer)
        i_status = _column(header, CARD_STATUS)
        if i_status is None:
            return [BufferCardRow() for row in rows if row]
        return [BufferCardRow(status=_value(row, i_status)) for row in rows if row]

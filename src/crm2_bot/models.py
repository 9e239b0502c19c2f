from datetime import date as Date
from typing import Optional

from pydantic import BaseModel, Field

from crm2_bot.parsing import (
    format_date,
    parse_date_cell,
    parse_flag,
    parse_int,
    parse_number,
)

# Column layouts, A onwards
EXPENSE_COLUMNS = ["Дата", "Платёжка", "Тип", "GEO", "Сумма", "Валюта", "USD", "Комментарий"]
INCOME_COLUMNS = ["Дата", "Статус", "Тип", "Сумма", "Валюта", "USD", "Комментарий"]
META_COLUMNS = ["user_id", "row", "ts", "sheet"]
SUBSCRIBER_COLUMNS = ["chat_id", "name", "is_admin", "subscribed", "min_slots", "min_buffer"]

INCOME_STATUSES = ["Ожидает", "Получено", "Отклонено"]
INCOME_TYPES = ["Пополнение", "Депозит"]
INCOME_RECEIVED = "Получено"


def _cell(row: list, index: int) -> str:
    return str(row[index]).strip() if len(row) > index and row[index] is not None else ""


def _optional_number(value: str) -> Optional[float]:
    number = parse_number(value)
    return number if number > 0 else None


# ── Entries written by the wizard ────────────────────────────────────────

class ExpenseEntry(BaseModel):
    date: Date
    payee: str = Field(..., min_length=1, description="Payment system (AdvCash, Capitalist, Card)")
    category: str = Field(..., min_length=1, description="Expense type from the reference sheet")
    geo: str = Field(..., pattern=r"^[A-Z]{2}$", description="Two-letter country code")
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    comment: str = ""

    def to_row(self) -> list:
        # USD is left blank; the sheet computes it
        return [
            format_date(self.date),
            self.payee,
            self.category,
            self.geo,
            self.amount,
            self.currency,
            "",
            self.comment,
        ]


class IncomeEntry(BaseModel):
    date: Date
    status: str = Field(..., min_length=1)
    income_type: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    comment: str = ""

    def to_row(self) -> list:
        return [
            format_date(self.date),
            self.status,
            self.income_type,
            self.amount,
            self.currency,
            "",
            self.comment,
        ]


# ── Records decoded from existing rows ───────────────────────────────────

class ExpenseRecord(BaseModel):
    row_number: int
    date: Optional[Date] = None
    payee: str = ""
    category: str = ""
    geo: str = ""
    amount: float = 0.0
    currency: str = ""
    usd: Optional[float] = None
    comment: str = ""

    @classmethod
    def from_row(cls, row_number: int, row: list) -> "ExpenseRecord":
        return cls(
            row_number=row_number,
            date=parse_date_cell(_cell(row, 0)),
            payee=_cell(row, 1),
            category=_cell(row, 2),
            geo=_cell(row, 3),
            amount=parse_number(_cell(row, 4)),
            currency=_cell(row, 5).upper(),
            usd=_optional_number(_cell(row, 6)),
            comment=_cell(row, 7),
        )


class IncomeRecord(BaseModel):
    row_number: int
    date: Optional[Date] = None
    status: str = ""
    income_type: str = ""
    amount: float = 0.0
    currency: str = ""
    usd: Optional[float] = None
    comment: str = ""

    @classmethod
    def from_row(cls, row_number: int, row: list) -> "IncomeRecord":
        return cls(
            row_number=row_number,
            date=parse_date_cell(_cell(row, 0)),
            status=_cell(row, 1),
            income_type=_cell(row, 2),
            amount=parse_number(_cell(row, 3)),
            currency=_cell(row, 4).upper(),
            usd=_optional_number(_cell(row, 5)),
            comment=_cell(row, 6),
        )


class MetaRecord(BaseModel):
    """Who appended which row; one line per committed entry in the meta sheet."""
    row_number: int = Field(..., description="Row of this record inside the meta sheet")
    user_id: str
    row: int = Field(..., description="Row of the entry in its data sheet")
    ts: str = ""
    sheet: str = ""

    @classmethod
    def from_row(cls, row_number: int, row: list) -> "MetaRecord":
        return cls(
            row_number=row_number,
            user_id=_cell(row, 0),
            row=parse_int(_cell(row, 1)),
            ts=_cell(row, 2),
            sheet=_cell(row, 3),
        )


class CardRow(BaseModel):
    total_slots: int = 0
    used_slots: int = 0
    holds: float = 0.0
    status: str = ""


class BufferCardRow(BaseModel):
    status: str = ""


class Subscriber(BaseModel):
    row_number: Optional[int] = None
    chat_id: str
    name: str = ""
    is_admin: bool = False
    subscribed: bool = True
    min_slots: Optional[int] = None
    min_buffer: Optional[int] = None

    @classmethod
    def from_row(cls, row_number: int, row: list) -> "Subscriber":
        min_slots = _cell(row, 4)
        min_buffer = _cell(row, 5)
        return cls(
            row_number=row_number,
            chat_id=_cell(row, 0),
            name=_cell(row, 1),
            is_admin=parse_flag(_cell(row, 2)),
            subscribed=parse_flag(_cell(row, 3)),
            min_slots=parse_int(min_slots) if min_slots else None,
            min_buffer=parse_int(min_buffer) if min_buffer else None,
        )

    def to_row(self) -> list:
        return [
            self.chat_id,
            self.name,
            "TRUE" if self.is_admin else "FALSE",
            "TRUE" if self.subscribed else "FALSE",
            "" if self.min_slots is None else self.min_slots,
            "" if self.min_buffer is None else self.min_buffer,
        ]


# ── Aggregates ───────────────────────────────────────────────────────────

class WindowStats(BaseModel):
    total: float = 0.0
    count: int = 0


class StatsSummary(BaseModel):
    today: WindowStats
    week: WindowStats
    month: WindowStats
    income_month: float = 0.0
    net_month: float = 0.0


class CardSummary(BaseModel):
    free_slots: int = 0
    free_buffer: int = 0
    holds_sum: float = 0.0
    reissue_count: int = 0
    is_empty: bool = False


class UndoResult(BaseModel):
    ok: bool
    row: Optional[int] = None
    sheet: str = ""
    reason: str = ""

from datetime import date, timedelta
from typing import Iterable, Mapping, Optional, Union

from crm2_bot.models import (
    INCOME_RECEIVED,
    BufferCardRow,
    CardRow,
    CardSummary,
    ExpenseRecord,
    IncomeRecord,
    StatsSummary,
    WindowStats,
)

# Both spellings have been used in the card sheet over time
REISSUE_STATUSES = {"к перевыпуску", "перевыпуск"}
BUFFER_FREE_STATUS = "свободна"

WINDOWS = ("day", "week", "month", "all")

Record = Union[ExpenseRecord, IncomeRecord]


def _status(value: str) -> str:
    return (value or "").strip().casefold()


def usd_value(record: Record, rates: Mapping[str, Optional[float]]) -> float:
    """USD amount of a row: the sheet's own USD cell, else amount * rate, else 0."""
    if record.usd:
        return record.usd
    rate = rates.get(record.currency)
    if rate and record.amount > 0:
        return record.amount * rate
    return 0.0


def window_bounds(name: str, today: date) -> tuple[Optional[date], Optional[date]]:
    """Half-open [start, end) range for a named window; (None, None) means all rows."""
    end = today + timedelta(days=1)
    if name == "day":
        return today, end
    if name == "week":
        return end - timedelta(days=7), end
    if name == "month":
        return today.replace(day=1), end
    if name == "all":
        return None, None
    raise ValueError(f"Unknown window: {name}")


def sum_window(
    records: Iterable[Record],
    rates: Mapping[str, Optional[float]],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> WindowStats:
    total = 0.0
    count = 0
    for record in records:
        if record.date is None:
            continue
        if start is not None and record.date < start:
            continue
        if end is not None and record.date >= end:
            continue
        count += 1
        value = usd_value(record, rates)
        if value > 0:
            total += value
    return WindowStats(total=round(total, 2), count=count)


def summarize(
    expenses: list[ExpenseRecord],
    incomes: list[IncomeRecord],
    rates: Mapping[str, Optional[float]],
    today: date,
) -> StatsSummary:
    month_start, month_end = window_bounds("month", today)
    received = [i for i in incomes if _status(i.status) == _status(INCOME_RECEIVED)]
    month = sum_window(expenses, rates, month_start, month_end)
    income_month = sum_window(received, rates, month_start, month_end).total
    return StatsSummary(
        today=sum_window(expenses, rates, *window_bounds("day", today)),
        week=sum_window(expenses, rates, *window_bounds("week", today)),
        month=month,
        income_month=income_month,
        net_month=round(income_month - month.total, 2),
    )


def card_summary(cards: list[CardRow], buffer: list[BufferCardRow]) -> CardSummary:
    free_slots = 0
    holds = 0.0
    reissue = 0
    for card in cards:
        free_slots += max(card.total_slots - card.used_slots, 0)
        holds += card.holds
        if _status(card.status) in REISSUE_STATUSES:
            reissue += 1
    free_buffer = sum(1 for b in buffer if _status(b.status) == BUFFER_FREE_STATUS)
    return CardSummary(
        free_slots=free_slots,
        free_buffer=free_buffer,
        holds_sum=round(holds, 2),
        reissue_count=reissue,
        is_empty=not cards and not buffer,
    )

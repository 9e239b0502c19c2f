import logging
from datetime import date
from typing import Optional

from crm2_bot.aggregator import card_summary, summarize, sum_window, window_bounds
from crm2_bot.cache import TTLCache
from crm2_bot.models import CardSummary, StatsSummary, WindowStats
from crm2_bot.store import EntryStore

logger = logging.getLogger(__name__)

WINDOW_TITLES = {
    "day": "Расходы за сегодня",
    "week": "Расходы за 7 дней",
    "month": "Расходы за месяц",
    "all": "Расходы за всё время",
}


def usd(amount: float) -> str:
    return f"${amount:.2f}"


def render_card_status(summary: CardSummary, min_slots: int, min_buffer: int) -> str:
    """Markdown card status text with threshold warnings or the empty-table note."""
    text = (
        "📊 *Статус карт*\n"
        f"Свободные слоты: *{summary.free_slots}*\n"
        f"Свободные буферки: *{summary.free_buffer}*\n"
        f"Зависшие холды: *{usd(summary.holds_sum)}*\n"
        f"Карт к перевыпуску: *{summary.reissue_count}*"
    )
    if summary.is_empty:
        return text + "\n\nℹ️ Таблица пустая — считаю нули. Можно начинать заполнять листы."

    alerts = []
    if summary.free_slots < min_slots:
        alerts.append(f"Мало свободных слотов: {summary.free_slots} (< {min_slots})")
    if summary.free_buffer < min_buffer:
        alerts.append(f"Мало свободных буферок: {summary.free_buffer} (< {min_buffer})")
    if alerts:
        text += "\n\n⚠️ " + " | ".join(alerts)
    return text


def render_window(name: str, stats: WindowStats) -> str:
    return f"{WINDOW_TITLES[name]}: {usd(stats.total)} (записей: {stats.count})"


def render_summary(summary: StatsSummary) -> str:
    return "\n".join([
        f"Расходы за сегодня: {usd(summary.today.total)}",
        f"Расходы за 7 дней: {usd(summary.week.total)}",
        f"Расходы за месяц: {usd(summary.month.total)}",
        f"Доходы за месяц: {usd(summary.income_month)}",
        f"Чистый результат (месяц): {usd(summary.net_month)}",
    ])


class CardReport:
    """Card status computed from the card and buffer sheets, cached briefly."""

    CACHE_KEY = "card_summary"

    def __init__(self, store: EntryStore, min_slots: int, min_buffer: int, cache: Optional[TTLCache] = None):
        self.store = store
        self.min_slots = min_slots
        self.min_buffer = min_buffer
        self.cache = cache or TTLCache(default_ttl=60)

    async def summary(self, force: bool = False) -> CardSummary:
        if not force:
            cached = self.cache.get(self.CACHE_KEY)
            if cached is not None:
                return cached
        cards = await self.store.load_cards()
        buffer = await self.store.load_buffer_cards()
        result = card_summary(cards, buffer)
        self.cache.set(self.CACHE_KEY, result)
        logger.info(f"Card summary recomputed: {result.model_dump()}")
        return result

    def render(self, summary: CardSummary, min_slots: Optional[int] = None, min_buffer: Optional[int] = None) -> str:
        return render_card_status(
            summary,
            self.min_slots if min_slots is None else min_slots,
            self.min_buffer if min_buffer is None else min_buffer,
        )

    async def text(self, force: bool = False) -> str:
        return self.render(await self.summary(force=force))


class ExpenseStats:
    """USD totals over the expense and income sheets."""

    def __init__(self, store: EntryStore):
        self.store = store

    async def window(self, name: str, today: date) -> WindowStats:
        start, end = window_bounds(name, today)
        expenses = await self.store.load_expenses()
        rates = await self.store.get_rates()
        return sum_window(expenses, rates, start, end)

    async def summary(self, today: date) -> StatsSummary:
        expenses = await self.store.load_expenses()
        incomes = await self.store.load_incomes()
        rates = await self.store.get_rates()
        return summarize(expenses, incomes, rates, today)

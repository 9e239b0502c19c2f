from telegram import InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardMarkup

from crm2_bot.wizard import CANCEL_TEXT

BTN_ADD_EXPENSE = "➕ Добавить расход"
BTN_ADD_INCOME = "➕ Добавить прибыль"
BTN_STATS = "📊 Статистика"
BTN_STATUS = "🗂 Статус карт"
BTN_TYPES = "📋 Типы"
BTN_CURRENCIES = "💱 Валюты"
BTN_UNDO = "↩️ Отменить последнюю"
BTN_HELP = "ℹ️ Помощь"

STATS_CALLBACK_PREFIX = "stats:"


def main_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [
            [BTN_ADD_EXPENSE, BTN_ADD_INCOME],
            [BTN_STATS, BTN_STATUS],
            [BTN_TYPES, BTN_CURRENCIES],
            [BTN_UNDO, BTN_HELP],
        ],
        resize_keyboard=True,
        is_persistent=True,
    )


def options_keyboard(options: list[str]) -> ReplyKeyboardMarkup:
    """One option per row plus the cancel button."""
    rows = [[option] for option in options]
    rows.append([CANCEL_TEXT])
    return ReplyKeyboardMarkup(rows, resize_keyboard=True, one_time_keyboard=bool(options))


def stats_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("📅 Сегодня", callback_data=f"{STATS_CALLBACK_PREFIX}day")],
        [InlineKeyboardButton("🗓 7 дней", callback_data=f"{STATS_CALLBACK_PREFIX}week")],
        [InlineKeyboardButton("📆 Месяц", callback_data=f"{STATS_CALLBACK_PREFIX}month")],
        [InlineKeyboardButton("🗄 Всё время", callback_data=f"{STATS_CALLBACK_PREFIX}all")],
        [InlineKeyboardButton("🧾 Сводка", callback_data=f"{STATS_CALLBACK_PREFIX}summary")],
    ])

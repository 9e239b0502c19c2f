import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    ApplicationHandlerStop,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    TypeHandler,
    filters,
)

from crm2_bot.aggregator import WINDOWS
from crm2_bot.cache import TTLCache
from crm2_bot.config import Settings
from crm2_bot.errors import ReferenceListEmpty, RemoteStatsError, StoreError
from crm2_bot.keyboards import (
    BTN_ADD_EXPENSE,
    BTN_ADD_INCOME,
    BTN_CURRENCIES,
    BTN_HELP,
    BTN_STATS,
    BTN_STATUS,
    BTN_TYPES,
    BTN_UNDO,
    STATS_CALLBACK_PREFIX,
    main_keyboard,
    options_keyboard,
    stats_keyboard,
)
from crm2_bot.notifier import broadcast_status, send_status_report
from crm2_bot.parsing import ReferencePolicy
from crm2_bot.remote_stats import RemoteStats
from crm2_bot.reports import CardReport, ExpenseStats, render_summary, render_window
from crm2_bot.sessions import Mode, SessionRepository
from crm2_bot.sheets_client import SheetsClient
from crm2_bot.store import EntryStore
from crm2_bot.subscribers import SubscriberRegistry
from crm2_bot.wizard import CANCEL_TEXT, Wizard, WizardReply

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Привет! Я бот CRM2.\n\n"
    "Кнопки:\n"
    "• ➕ Добавить расход / ➕ Добавить прибыль — пошаговый ввод\n"
    "• 📊 Статистика — расходы за день, 7 дней, месяц и сводка\n"
    "• 🗂 Статус карт — свободные слоты, буферки, холды\n"
    "• ↩️ Отменить последнюю — удалить последнюю запись (любой лист)\n"
    "• 📋 Типы / 💱 Валюты — списки из «Справочники» и «Курсы»\n\n"
    "/subscribe — получать статус карт по расписанию\n"
    "/unsubscribe — отписаться\n"
    "/whoami — показать ваш user_id"
)

STORE_FAILURE_TEXT = "❌ Не удалось обратиться к таблице. Попробуйте позже."
STATS_FAILURE_TEXT = "Не удалось получить статистику 😕"

# Seen update ids are remembered this long to drop redelivered updates
SEEN_UPDATE_TTL = 10 * 60

BOT_COMMANDS = [
    ("start", "Начать работу"),
    ("expense", "Добавить расход"),
    ("income", "Добавить прибыль"),
    ("stats", "Статистика"),
    ("status", "Статус карт"),
    ("undo", "Отменить последнюю запись"),
    ("types", "Типы расходов"),
    ("currencies", "Валюты"),
    ("subscribe", "Подписаться на статус карт"),
    ("unsubscribe", "Отписаться"),
    ("cancel", "Отменить ввод"),
    ("whoami", "Показать user_id"),
    ("help", "Помощь"),
]


def local_today(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


@dataclass
class Services:
    settings: Settings
    store: EntryStore
    registry: SubscriberRegistry
    wizard: Wizard
    card_report: CardReport
    stats: ExpenseStats
    remote_stats: Optional[RemoteStats]
    seen_updates: TTLCache

    def today(self) -> date:
        return local_today(self.settings.timezone)


def build_services(settings: Settings, client: Optional[SheetsClient] = None) -> Services:
    client = client or SheetsClient.from_settings(settings)
    store = EntryStore(client, settings)
    wizard = Wizard(
        store,
        SessionRepository(),
        ReferencePolicy.from_name(settings.reference_policy),
        today=lambda: local_today(settings.timezone),
    )
    return Services(
        settings=settings,
        store=store,
        registry=SubscriberRegistry(client, settings),
        wizard=wizard,
        card_report=CardReport(
            store,
            settings.threshold_slots,
            settings.threshold_buffer_free,
            cache=TTLCache(default_ttl=settings.status_cache_ttl),
        ),
        stats=ExpenseStats(store),
        remote_stats=(
            RemoteStats(settings.crm2_stats_url, settings.crm2_stats_token)
            if settings.remote_stats_enabled else None
        ),
        seen_updates=TTLCache(default_ttl=SEEN_UPDATE_TTL),
    )


def _services(context: ContextTypes.DEFAULT_TYPE) -> Services:
    return context.bot_data["services"]


def _conversation_id(update: Update) -> str:
    chat = update.effective_chat
    return str(chat.id if chat else update.effective_user.id)


async def _send_wizard_reply(update: Update, reply: WizardReply):
    markup = main_keyboard() if reply.finished else options_keyboard(reply.options)
    await update.effective_message.reply_text(reply.text, reply_markup=markup)


# ── Middleware-like handlers ─────────────────────────────────────────────

async def drop_duplicate_updates(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Stop processing of an update id that was already handled recently."""
    seen = _services(context).seen_updates
    if update.update_id in seen:
        logger.info(f"Dropping duplicate update {update.update_id}")
        raise ApplicationHandlerStop
    seen.set(update.update_id, True)


async def purge_seen_updates(context: ContextTypes.DEFAULT_TYPE):
    _services(context).seen_updates.purge_expired()


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    logger.error("Unhandled error while processing update", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text("❌ Что-то пошло не так. Попробуйте ещё раз.")


# ── Basic commands ───────────────────────────────────────────────────────

async def start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text(HELP_TEXT, reply_markup=main_keyboard())


async def whoami(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text(
        f"user_id: {update.effective_user.id}\nchat_id: {update.effective_chat.id}"
    )


async def show_types(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        types = await _services(context).store.get_types()
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT, reply_markup=main_keyboard())
        return
    await update.effective_message.reply_text(
        "Типы расхода:\n• " + "\n• ".join(types), reply_markup=main_keyboard()
    )


async def show_currencies(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        currencies = await _services(context).store.get_currencies()
    except ReferenceListEmpty as e:
        await update.effective_message.reply_text(f"❌ {e}", reply_markup=main_keyboard())
        return
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT, reply_markup=main_keyboard())
        return
    await update.effective_message.reply_text(
        "Валюты:\n• " + "\n• ".join(currencies), reply_markup=main_keyboard()
    )


# ── Wizard ───────────────────────────────────────────────────────────────

async def start_expense(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reply = await _services(context).wizard.start(_conversation_id(update), Mode.EXPENSE)
    await _send_wizard_reply(update, reply)


async def start_income(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reply = await _services(context).wizard.start(_conversation_id(update), Mode.INCOME)
    await _send_wizard_reply(update, reply)


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE):
    reply = _services(context).wizard.cancel(_conversation_id(update))
    await _send_wizard_reply(update, reply)


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    user_id = update.effective_user.id
    text = update.effective_message.text or ""
    logger.info(f"User {user_id}: {text}")

    reply = await _services(context).wizard.handle(_conversation_id(update), user_id, text)
    if reply is None:
        await update.effective_message.reply_text("Выберите действие:", reply_markup=main_keyboard())
        return
    await _send_wizard_reply(update, reply)


# ── Statistics ───────────────────────────────────────────────────────────

async def stats_menu(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text("Что показать?", reply_markup=stats_keyboard())


async def stats_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    await query.answer()
    services = _services(context)
    choice = query.data[len(STATS_CALLBACK_PREFIX):]
    try:
        if choice == "summary":
            if services.remote_stats is not None:
                summary = await services.remote_stats.summary()
            else:
                summary = await services.stats.summary(services.today())
            text = render_summary(summary)
        elif choice in WINDOWS:
            text = render_window(choice, await services.stats.window(choice, services.today()))
        else:
            logger.warning(f"Unknown stats choice: {choice}")
            text = STATS_FAILURE_TEXT
    except (StoreError, RemoteStatsError) as e:
        logger.error(f"stats error: {e}")
        text = STATS_FAILURE_TEXT
    await query.edit_message_text(text)


# ── Undo ─────────────────────────────────────────────────────────────────

async def undo_last(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        result = await _services(context).store.undo_last(update.effective_user.id)
    except StoreError as e:
        await update.effective_message.reply_text(f"❌ Ошибка: {e}")
        return
    if result.ok:
        await update.effective_message.reply_text(f"✅ Удалил строку №{result.row} из «{result.sheet}».")
    else:
        await update.effective_message.reply_text(f"❌ {result.reason}")


# ── Card status & subscriptions ──────────────────────────────────────────

async def card_status(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        text = await _services(context).card_report.text()
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT)
        return
    await update.effective_message.reply_text(text, parse_mode=ParseMode.MARKDOWN)


async def subscribe(update: Update, context: ContextTypes.DEFAULT_TYPE):
    chat = update.effective_chat
    name = chat.title or " ".join(filter(None, [chat.first_name, chat.last_name])) or chat.username or ""
    try:
        await _services(context).registry.subscribe(chat.id, name)
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT)
        return
    await update.effective_message.reply_text(
        "🔔 Подписка оформлена: статус карт будет приходить по расписанию.\n/unsubscribe — отписаться."
    )


async def unsubscribe(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        removed = await _services(context).registry.unsubscribe(update.effective_chat.id)
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT)
        return
    if removed:
        await update.effective_message.reply_text("🔕 Подписка отключена.")
    else:
        await update.effective_message.reply_text("Этот чат не подписан.")


async def _require_admin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    if await _services(context).registry.is_admin(update.effective_chat.id):
        return True
    await update.effective_message.reply_text("⛔ Команда доступна только администраторам.")
    return False


async def list_subscribers(update: Update, context: ContextTypes.DEFAULT_TYPE):
    try:
        if not await _require_admin(update, context):
            return
        active = await _services(context).registry.list_active()
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT)
        return
    if not active:
        await update.effective_message.reply_text("Подписчиков нет.")
        return
    lines = [f"• {s.name or '—'} ({s.chat_id}){' 👑' if s.is_admin else ''}" for s in active]
    await update.effective_message.reply_text("Подписчики:\n" + "\n".join(lines))


async def notify_now(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = _services(context)
    try:
        if not await _require_admin(update, context):
            return
        sent, failed = await broadcast_status(context.bot, services.registry, services.card_report)
    except StoreError:
        await update.effective_message.reply_text(STORE_FAILURE_TEXT)
        return
    await update.effective_message.reply_text(f"Отправлено: {sent}, ошибок: {failed}.")


# ── Application ──────────────────────────────────────────────────────────

def _button(text: str):
    return filters.Regex(f"^{re.escape(text)}$")


async def setup_commands(application: Application):
    await application.bot.set_my_commands(BOT_COMMANDS)


def build_application(settings: Settings, services: Services) -> Application:
    builder = ApplicationBuilder().token(settings.telegram_bot_token)
    if settings.use_webhook:
        # Updates arrive through the FastAPI webhook route instead
        builder = builder.updater(None)
    app = builder.build()
    app.bot_data["services"] = services

    app.add_handler(TypeHandler(Update, drop_duplicate_updates), group=-1)

    app.add_handler(CommandHandler(["start", "help"], start))
    app.add_handler(CommandHandler("whoami", whoami))
    app.add_handler(CommandHandler("expense", start_expense))
    app.add_handler(CommandHandler("income", start_income))
    app.add_handler(CommandHandler("cancel", cancel))
    app.add_handler(CommandHandler("types", show_types))
    app.add_handler(CommandHandler("currencies", show_currencies))
    app.add_handler(CommandHandler("stats", stats_menu))
    app.add_handler(CommandHandler("undo", undo_last))
    app.add_handler(CommandHandler("status", card_status))
    app.add_handler(CommandHandler("subscribe", subscribe))
    app.add_handler(CommandHandler("unsubscribe", unsubscribe))
    app.add_handler(CommandHandler("subscribers", list_subscribers))
    app.add_handler(CommandHandler("notify_now", notify_now))

    app.add_handler(MessageHandler(_button(BTN_ADD_EXPENSE), start_expense))
    app.add_handler(MessageHandler(_button(BTN_ADD_INCOME), start_income))
    app.add_handler(MessageHandler(_button(CANCEL_TEXT), cancel))
    app.add_handler(MessageHandler(_button(BTN_TYPES), show_types))
    app.add_handler(MessageHandler(_button(BTN_CURRENCIES), show_currencies))
    app.add_handler(MessageHandler(_button(BTN_STATS), stats_menu))
    app.add_handler(MessageHandler(_button(BTN_STATUS), card_status))
    app.add_handler(MessageHandler(_button(BTN_UNDO), undo_last))
    app.add_handler(MessageHandler(_button(BTN_HELP), start))
    app.add_handler(CallbackQueryHandler(stats_callback, pattern=f"^{STATS_CALLBACK_PREFIX}"))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    app.add_error_handler(error_handler)

    trigger = CronTrigger.from_crontab(settings.notify_cron, timezone=settings.timezone)
    app.job_queue.run_custom(send_status_report, job_kwargs={"trigger": trigger}, name="status-report")
    logger.info(f"Status report scheduled with cron '{settings.notify_cron}' ({settings.timezone})")

    app.job_queue.run_repeating(purge_seen_updates, interval=60)

    return app

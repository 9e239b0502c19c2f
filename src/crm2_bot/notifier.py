import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from crm2_bot.reports import CardReport
from crm2_bot.subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)


async def broadcast_status(bot: Bot, registry: SubscriberRegistry, report: CardReport) -> tuple[int, int]:
    """Send a freshly computed card status to every active subscriber.

    Returns (sent, failed). One recipient failing does not stop the others.
    """
    summary = await report.summary(force=True)
    subscribers = await registry.list_active(force=True)
    sent = failed = 0
    for subscriber in subscribers:
        text = report.render(summary, subscriber.min_slots, subscriber.min_buffer)
        try:
            await bot.send_message(chat_id=subscriber.chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
            sent += 1
        except Exception as e:
            failed += 1
            logger.error(f"Failed to send status report to {subscriber.chat_id}: {e}")
    logger.info(f"Status report delivered to {sent} chats, {failed} failed")
    return sent, failed


async def send_status_report(context: ContextTypes.DEFAULT_TYPE):
    """Job callback: scheduled status broadcast."""
    services = context.bot_data["services"]
    try:
        await broadcast_status(context.bot, services.registry, services.card_report)
    except Exception as e:
        logger.error(f"Scheduled status report failed: {e}")

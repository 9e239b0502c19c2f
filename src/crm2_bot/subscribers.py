"""Subscriber list kept in the settings sheet, one row per chat."""

import asyncio
import logging
from typing import Optional

from crm2_bot.cache import TTLCache
from crm2_bot.config import Settings
from crm2_bot.models import SUBSCRIBER_COLUMNS, Subscriber
from crm2_bot.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

CACHE_KEY = "subscribers"


class SubscriberRegistry:
    def __init__(self, client: SheetsClient, settings: Settings, cache: Optional[TTLCache] = None):
        self.client = client
        self.sheet_name = settings.sheet_settings
        self.cache = cache or TTLCache(default_ttl=settings.subscriber_cache_ttl)
        self._sheet_ready = False

    async def _ensure_sheet(self):
        if self._sheet_ready:
            return
        titles = await asyncio.to_thread(self.client.sheet_ids)
        if self.sheet_name not in titles:
            await asyncio.to_thread(self.client.add_sheet, self.sheet_name)
            await asyncio.to_thread(
                self.client.update_values, self.sheet_name, "A1:F1", [SUBSCRIBER_COLUMNS]
            )
        self._sheet_ready = True

    async def all(self, force: bool = False) -> list[Subscriber]:
        if not force:
            cached = self.cache.get(CACHE_KEY)
            if cached is not None:
                return cached
        await self._ensure_sheet()
        values = await asyncio.to_thread(self.client.get_values, self.sheet_name, "A2:F")
        subscribers = [
            Subscriber.from_row(i + 2, row)
            for i, row in enumerate(values)
            if row and str(row[0]).strip()
        ]
        self.cache.set(CACHE_KEY, subscribers)
        return subscribers

    async def list_active(self, force: bool = False) -> list[Subscriber]:
        return [s for s in await self.all(force=force) if s.subscribed]

    async def get(self, chat_id, force: bool = False) -> Optional[Subscriber]:
        key = str(chat_id)
        for subscriber in await self.all(force=force):
            if subscriber.chat_id == key:
                return subscriber
        return None

    async def is_admin(self, chat_id) -> bool:
        subscriber = await self.get(chat_id)
        return bool(subscriber and subscriber.is_admin)

    async def subscribe(self, chat_id, name: str = "") -> Subscriber:
        """Create the chat's row, or flip an existing one back to subscribed."""
        # Read fresh so a stale snapshot can't produce a duplicate row
        existing = await self.get(chat_id, force=True)
        if existing is not None:
            if existing.subscribed and (not name or existing.name == name):
                return existing
            updated = existing.model_copy(
                update={"subscribed": True, "name": name or existing.name}
            )
            row = existing.row_number
            await asyncio.to_thread(
                self.client.update_values, self.sheet_name, f"A{row}:F{row}", [updated.to_row()]
            )
            logger.info(f"Reactivated subscription for chat {chat_id}")
        else:
            updated = Subscriber(chat_id=str(chat_id), name=name, subscribed=True)
            updated.row_number = await asyncio.to_thread(
                self.client.append_rows, self.sheet_name, "A:F", [updated.to_row()], "RAW"
            )
            logger.info(f"New subscriber: chat {chat_id} ({name})")
        self.cache.delete(CACHE_KEY)
        return updated

    async def unsubscribe(self, chat_id) -> bool:
        """Soft-remove the subscription. Returns False when the chat was not subscribed."""
        existing = await self.get(chat_id, force=True)
        if existing is None or not existing.subscribed:
            return False
        row = existing.row_number
        await asyncio.to_thread(self.client.update_values, self.sheet_name, f"D{row}", [["FALSE"]])
        self.cache.delete(CACHE_KEY)
        logger.info(f"Chat {chat_id} unsubscribed")
        return True

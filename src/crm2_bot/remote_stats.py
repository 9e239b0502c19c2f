"""Statistics served by the spreadsheet's Apps Script web app.

The web app answers ``GET ?action=stats&token=...`` with
``{"ok": true, "today": .., "week7": .., "expMon": .., "incMon": .., "netMon": ..}``.
"""

import logging
from typing import Optional

import httpx

from crm2_bot.errors import RemoteStatsError
from crm2_bot.models import StatsSummary, WindowStats
from crm2_bot.parsing import parse_number

logger = logging.getLogger(__name__)


class RemoteStats:
    def __init__(self, url: str, token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.token = token
        self._transport = transport

    async def fetch(self) -> dict:
        params = {"action": "stats", "token": self.token}
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.get(self.url, params=params, timeout=20, follow_redirects=True)

        try:
            data = resp.json()
        except ValueError:
            raise RemoteStatsError(f"Ответ не JSON, HTTP {resp.status_code}") from None

        if resp.status_code != 200 or not isinstance(data, dict) or data.get("ok") is not True:
            error = data.get("error") if isinstance(data, dict) else None
            raise RemoteStatsError(error or f"Ошибка запроса статистики, HTTP {resp.status_code}")
        return data

    async def summary(self) -> StatsSummary:
        data = await self.fetch()
        logger.info("Fetched remote statistics")
        return StatsSummary(
            today=WindowStats(total=parse_number(data.get("today"))),
            week=WindowStats(total=parse_number(data.get("week7"))),
            month=WindowStats(total=parse_number(data.get("expMon"))),
            income_month=parse_number(data.get("incMon")),
            net_month=parse_number(data.get("netMon")),
        )

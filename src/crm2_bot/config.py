import base64
import json
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    telegram_bot_token: str
    spreadsheet_id: str
    google_service_account_b64: str = ""
    google_service_account_file: str = ""

    # Sheet name mapping
    sheet_expenses: str = "Расходы"
    sheet_income: str = "Доходы"
    sheet_types: str = "Справочники"
    sheet_rates: str = "Курсы"
    sheet_meta: str = "BotMeta"
    sheet_settings: str = "Настройки"
    sheet_cards: str = "Карты"
    sheet_buffer: str = "Буферки"

    # Alert thresholds for the card status report
    threshold_slots: int = 5
    threshold_buffer_free: int = 3

    # Empty WEBHOOK_BASE_URL => long polling
    webhook_base_url: str = ""
    webhook_path: str = "/tg-webhook"
    webhook_secret: str = ""
    host: str = "0.0.0.0"
    port: int = 3000

    notify_cron: str = "0 9 * * *"
    timezone: str = "UTC"

    reference_cache_ttl: int = 600
    subscriber_cache_ttl: int = 60
    status_cache_ttl: int = 60
    reference_policy: Literal["permissive", "strict"] = "permissive"

    crm2_stats_url: str = ""
    crm2_stats_token: str = ""

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_credentials(self) -> "Settings":
        if not self.google_service_account_b64 and not self.google_service_account_file:
            raise ValueError(
                "GOOGLE_SERVICE_ACCOUNT_B64 or GOOGLE_SERVICE_ACCOUNT_FILE must be set"
            )
        return self

    @property
    def use_webhook(self) -> bool:
        return bool(self.webhook_base_url)

    @property
    def webhook_url(self) -> str:
        return f"{self.webhook_base_url.rstrip('/')}{self.webhook_path}"

    @property
    def remote_stats_enabled(self) -> bool:
        return bool(self.crm2_stats_url and self.crm2_stats_token)

    def service_account_info(self) -> dict | None:
        """Decoded service account JSON, or None when a key file is configured instead."""
        if not self.google_service_account_b64:
            return None
        return json.loads(base64.b64decode(self.google_service_account_b64).decode("utf-8"))


@lru_cache
def get_settings() -> Settings:
    return Settings()

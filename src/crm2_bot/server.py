import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from telegram import Update
from telegram.ext import Application

from crm2_bot.bot import setup_commands
from crm2_bot.config import Settings

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def create_app(application: Application, settings: Settings) -> FastAPI:
    """HTTP front for the bot: health check always, webhook route when configured.

    Without WEBHOOK_BASE_URL the lifespan drives long polling instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with application:
            await setup_commands(application)
            if settings.use_webhook:
                await application.bot.set_webhook(
                    settings.webhook_url,
                    secret_token=settings.webhook_secret or None,
                    allowed_updates=Update.ALL_TYPES,
                )
                logger.info(f"Bot via webhook on {settings.port}, url: {settings.webhook_url}")
            else:
                await application.bot.delete_webhook()
                await application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
                logger.info(f"Bot via long polling, health on {settings.port}")
            await application.start()
            try:
                yield
            finally:
                if application.updater and application.updater.running:
                    await application.updater.stop()
                await application.stop()
                logger.info("Bot stopped")

    app = FastAPI(title="CRM2 Bot", version="1.0.0", lifespan=lifespan)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    if settings.use_webhook:
        @app.post(settings.webhook_path)
        async def telegram_webhook(request: Request):
            if settings.webhook_secret and request.headers.get(SECRET_HEADER) != settings.webhook_secret:
                raise HTTPException(status_code=403, detail="Invalid secret token")
            data = await request.json()
            await application.update_queue.put(Update.de_json(data, application.bot))
            return {"ok": True}

    return app

"""Entry point for the CRM2 bot."""

import logging
import sys

import uvicorn
from dotenv import load_dotenv
from pydantic import ValidationError

from crm2_bot.bot import build_application, build_services
from crm2_bot.config import get_settings
from crm2_bot.server import create_app


def main():
    """Load configuration, wire the bot and serve it."""
    load_dotenv()
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )
    # httpx logs every Telegram poll at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    services = build_services(settings)
    application = build_application(settings, services)
    app = create_app(application, settings)

    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    except KeyboardInterrupt:
        print("\nShutting down CRM2 bot...")
        sys.exit(0)


if __name__ == "__main__":
    main()

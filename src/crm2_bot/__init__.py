"""CRM2 bot: expenses, income and card metrics in Google Sheets, driven from Telegram."""

__version__ = "1.0.0"

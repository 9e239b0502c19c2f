import pytest
from fastapi.testclient import TestClient
from telegram.ext import ApplicationBuilder

from crm2_bot.config import Settings
from crm2_bot.server import SECRET_HEADER, create_app


def make_settings(**overrides):
    values = dict(
        telegram_bot_token="123:ABC",
        spreadsheet_id="spreadsheet",
        google_service_account_file="service_account.json",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def application():
    return ApplicationBuilder().token("123:ABC").updater(None).build()


@pytest.fixture
def webhook_client(application):
    settings = make_settings(webhook_base_url="https://bot.example.com", webhook_secret="s3cret")
    # Not used as a context manager, so the lifespan (and Telegram calls) never run
    return TestClient(create_app(application, settings))


def test_health(application):
    client = TestClient(create_app(application, make_settings()))
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_webhook_route_absent_in_polling_mode(application):
    client = TestClient(create_app(application, make_settings()))
    assert client.post("/tg-webhook", json={"update_id": 1}).status_code in (404, 405)


def test_webhook_rejects_wrong_secret(webhook_client, application):
    resp = webhook_client.post("/tg-webhook", json={"update_id": 1}, headers={SECRET_HEADER: "nope"})
    assert resp.status_code == 403
    assert application.update_queue.empty()


def test_webhook_queues_update(webhook_client, application):
    resp = webhook_client.post("/tg-webhook", json={"update_id": 42}, headers={SECRET_HEADER: "s3cret"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert application.update_queue.get_nowait().update_id == 42

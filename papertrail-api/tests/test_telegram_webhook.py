from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from papertrail.dependencies import get_engine
from papertrail.main import app
from papertrail.routers import telegram_webhook
from papertrail.schemas.session import FlowKind
from papertrail.schemas.telegram import TelegramCallbackQuery, TelegramMessage, TelegramUpdate, TelegramUser
from papertrail.services.errors import StorageUnavailable


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def text_update(text, update_id=1):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 10,
            "date": 1772000000,
            "chat": {"id": 555, "type": "private"},
            "from": {"id": 777, "is_bot": False, "first_name": "Dana"},
            "text": text,
        },
    }


def button_update(data, update_id):
    return {
        "update_id": update_id,
        "callback_query": {
            "id": f"cbq-{update_id}",
            "from": {"id": 777, "is_bot": False, "first_name": "Dana"},
            "message": {"message_id": 11, "date": 1772000000, "chat": {"id": 555, "type": "private"}},
            "data": data,
        },
    }


class TestTelegramSchemas:
    def test_message_from_alias(self):
        msg = TelegramMessage(
            message_id=100,
            date=1772000000,
            chat={"id": 555, "type": "private"},
            text="/report",
            **{"from": TelegramUser(id=777, first_name="Dana")},
        )
        assert msg.from_user.id == 777
        assert msg.attachment_id is None

    def test_callback_query_from_alias(self):
        callback = TelegramCallbackQuery(
            id="query123", data="rep:select_type:revenue", **{"from": TelegramUser(id=777, first_name="Dana")}
        )
        assert callback.from_user.id == 777

    def test_update_defaults(self):
        update = TelegramUpdate(update_id=1)
        assert update.message is None
        assert update.callback_query is None


class TestWebhookEndpoint:
    def test_report_wizard_over_http(self, client, repository, outbound):
        response = client.post("/telegram-webhook", json=text_update("/report"))
        assert response.status_code == 200
        assert response.json()["outcome"] == "started"
        assert response.json()["flow"] == "report"

        response = client.post("/telegram-webhook", json=button_update("rep:select_type:revenue", 2))
        assert response.json()["outcome"] == "advanced"

        response = client.post("/telegram-webhook", json=button_update("rep:select_type:revenue", 2))
        assert response.json()["outcome"] == "duplicate"

        session = repository.get_active(555, 777, FlowKind.REPORT)
        assert session.current_step == "date"
        assert session.fields == {"report_type": "revenue"}

    def test_free_text_without_session(self, client):
        response = client.post("/telegram-webhook", json=text_update("hello"))
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["outcome"] is None

    def test_invalid_json_payload(self, client):
        response = client.post(
            "/telegram-webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_storage_unavailable_returns_503(self, client, engine):
        engine.dispatcher.dispatch = Mock(side_effect=StorageUnavailable("db down"))
        response = client.post("/telegram-webhook", json=text_update("/report"))
        assert response.status_code == 503

    def test_unexpected_error_returns_500(self, client, engine):
        engine.dispatcher.dispatch = Mock(side_effect=RuntimeError("boom"))
        response = client.post("/telegram-webhook", json=text_update("/report"))
        assert response.status_code == 500


class TestWebhookSecret:
    def test_missing_secret_rejected(self, client):
        with patch.object(telegram_webhook.settings, "telegram_webhook_secret", "s3cret"):
            response = client.post("/telegram-webhook", json=text_update("/report"))
        assert response.status_code == 401

    def test_matching_secret_accepted(self, client):
        with patch.object(telegram_webhook.settings, "telegram_webhook_secret", "s3cret"):
            response = client.post(
                "/telegram-webhook",
                json=text_update("/report"),
                headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
            )
        assert response.status_code == 200


    def test_edited_message_ignored(self, client, repository):
        update = text_update("/report")
        update["edited_message"] = update.pop("message")
        response = client.post("/telegram-webhook", json=update)
        assert response.status_code == 200
        assert response.json()["outcome"] is None
        assert repository.get_active(555, 777, FlowKind.REPORT) is None


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_debug_follows_settings(self):
        assert app.debug is telegram_webhook.settings.debug

"""Tests for the HTTP surface."""

import logging

import httpx
import pytest
from fastapi.testclient import TestClient

from as_webhook import main
from as_webhook.channels.webhook import WebhookDispatcher
from as_webhook.config import Settings
from as_webhook.models.routes import RoutesConfig
from as_webhook.processor import EventProcessor
from as_webhook.router import Resolver
from as_webhook.selector import SelectorCompileError

from conftest import RecordingHandler

TXN_URL = "/_matrix/app/v1/transactions/txn123"

MESSAGE_EVENT = {
    "type": "m.room.message",
    "event_id": "$test_event",
    "room_id": "!room:domain.com",
    "sender": "@user:domain.com",
    "origin_server_ts": 1234567890,
    "content": {"body": "test message", "msgtype": "m.text"},
}


@pytest.fixture
def install_processor(monkeypatch):
    def install(handler, *routes: dict) -> EventProcessor:
        config = RoutesConfig.model_validate({"routes": list(routes)})
        processor = EventProcessor(
            Resolver(config), WebhookDispatcher(transport=httpx.MockTransport(handler))
        )
        monkeypatch.setattr(main, "processor", processor)
        return processor

    return install


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)


class TestEndpoints:
    """Fixed application service endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_room_query(self, client):
        response = client.get("/_matrix/app/v1/rooms/%23room%3Adomain.com")
        assert response.status_code == 404
        assert response.json()["errcode"] == "M_NOT_FOUND"

    def test_user_query(self, client):
        response = client.get("/_matrix/app/v1/users/%40user%3Adomain.com")
        assert response.status_code == 404
        assert response.json()["errcode"] == "M_NOT_FOUND"

    def test_routes_hide_secrets(self, client, install_processor):
        install_processor(
            RecordingHandler(),
            {"name": "signed", "webhook_url": "http://a", "shared_secret": "s3cr3t"},
        )

        routes = client.get("/routes").json()["routes"]

        assert routes[0]["name"] == "signed"
        assert routes[0]["signed"] is True
        assert "shared_secret" not in routes[0]
        assert "s3cr3t" not in str(routes)


class TestTransactions:
    """PUT /_matrix/app/v1/transactions/{txn_id}."""

    def test_forwards_message(self, client, install_processor, caplog):
        caplog.set_level(logging.INFO)
        handler = RecordingHandler()
        install_processor(handler, {"name": "hook", "webhook_url": "http://hook"})

        response = client.put(TXN_URL, json={"events": [MESSAGE_EVENT]})

        assert response.status_code == 200
        assert response.json() == {}
        assert handler.urls == ["http://hook"]
        assert "Parsed matrix transaction txn123: events=1" in caplog.text

    def test_acknowledged_when_delivery_fails(self, client, install_processor):
        handler = RecordingHandler(status_code=500, content=b"down")
        install_processor(handler, {"webhook_url": "http://hook"})

        response = client.put(TXN_URL, json={"events": [MESSAGE_EVENT]})

        assert response.status_code == 200
        assert response.json() == {}
        assert len(handler.requests) == 1

    def test_non_message_event_acknowledged(self, client, install_processor):
        handler = RecordingHandler()
        install_processor(handler, {"webhook_url": "http://hook"})
        event = dict(MESSAGE_EVENT, type="m.room.member", content={"membership": "join"})

        response = client.put(TXN_URL, json={"events": [event]})

        assert response.status_code == 200
        assert handler.requests == []

    def test_empty_transaction(self, client, install_processor):
        install_processor(RecordingHandler())
        response = client.put(TXN_URL, json={"events": []})
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "content",
        [
            b"not json",
            b"[1, 2, 3]",
            b'{"events": "nope"}',
            b'{"events": [{"type": "m.room.message", "content": "not an object"}]}',
            b'{"events": [{"type": "m.room.message", "origin_server_ts": "soon"}]}',
            b'{"events": [{"type": "m.room.message", "origin_server_ts": "1234"}]}',
            b'{"events": [{"type": "m.room.message", "origin_server_ts": true}]}',
            b'{"events": [{"type": "m.room.message", "origin_server_ts": 1234.5}]}',
            b'{"events": [{"type": 1, "origin_server_ts": 1234}]}',
        ],
    )
    def test_malformed_rejected(self, client, install_processor, content):
        handler = RecordingHandler()
        install_processor(handler, {"webhook_url": "http://hook"})

        response = client.put(TXN_URL, content=content, headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert handler.requests == []

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(main, "processor", None)
        response = client.put(TXN_URL, json={"events": []})
        assert response.status_code == 503


class TestStartup:
    """Route table loading at startup."""

    def test_missing_config_uses_default(self, tmp_path):
        processor = main.build_processor(Settings(routes_config=str(tmp_path / "missing.toml")))
        assert processor.resolver.routes == []

    def test_unparseable_config_uses_default(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[[routes]\nbroken")
        processor = main.build_processor(Settings(routes_config=str(path)))
        assert processor.resolver.routes == []

    def test_invalid_selector_is_fatal(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[[routes]]\nselector = "event.type =="\nwebhook_url = "http://x"\n')
        with pytest.raises(SelectorCompileError):
            main.build_processor(Settings(routes_config=str(path)))

    def test_lifespan_loads_routes(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('[[routes]]\nname = "all"\nwebhook_url = "http://x"\n')
        monkeypatch.setattr(main.app.state, "settings", Settings(routes_config=str(path)), raising=False)

        with TestClient(main.app) as client:
            routes = client.get("/routes").json()["routes"]

        assert [r["name"] for r in routes] == ["all"]
        assert main.processor is None

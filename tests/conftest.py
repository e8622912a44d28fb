"""Shared fixtures for as-webhook tests."""

from typing import Any

import httpx
import pytest

from as_webhook.channels.webhook import WebhookDispatcher
from as_webhook.models.event import MatrixEvent


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replies with a fixed response."""

    def __init__(self, status_code: int = 200, content: bytes = b"{}"):
        self.status_code = status_code
        self.content = content
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.content)

    @property
    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


def make_event(**overrides: Any) -> MatrixEvent:
    data: dict[str, Any] = {
        "type": "m.room.message",
        "event_id": "$event1",
        "room_id": "!room:example.com",
        "sender": "@alice:example.com",
        "origin_server_ts": 1234567890,
        "content": {"msgtype": "m.text", "body": "hello world"},
    }
    data.update(overrides)
    return MatrixEvent.model_validate(data)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def dispatcher(handler: RecordingHandler) -> WebhookDispatcher:
    return WebhookDispatcher(timeout=5.0, transport=httpx.MockTransport(handler))

"""Shared fixtures for the WhatsApp relay tests."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from src.main import create_app
from src.messaging.cloud import CloudApiDispatcher
from src.messaging.session import SessionDispatcher

API_KEY = "test-secret"


class FakeSessionClient:
    """Stands in for the WAHA client; events are fired by the test."""

    def __init__(self):
        self.callbacks = {}
        self.started = 0
        self.closed = False
        self.destroyed = False
        self.logout_error = None
        self.chat_ids = {}
        self.sent = []
        self.phone_number = "5511988887777"

    def on(self, event, callback):
        self.callbacks.setdefault(event, []).append(callback)

    def emit(self, event, *args):
        for callback in self.callbacks.get(event, []):
            callback(*args)

    async def start(self):
        self.started += 1
        await asyncio.sleep(0)

    async def get_number_id(self, phone):
        return self.chat_ids.get(phone)

    async def send_text(self, chat_id, text):
        self.sent.append(("text", chat_id, text))
        return f"true_{chat_id}_MSG1"

    async def send_file(self, chat_id, media, caption=""):
        self.sent.append(("file", chat_id, media, caption))
        return f"true_{chat_id}_MSG2"

    async def logout(self):
        if self.logout_error:
            raise self.logout_error

    async def destroy(self):
        self.destroyed = True

    async def close(self):
        self.closed = True


class FakeClientFactory:
    def __init__(self):
        self.created = []

    def __call__(self):
        client = FakeSessionClient()
        self.created.append(client)
        return client

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def api_env(monkeypatch):
    monkeypatch.setenv("API_SECRET", API_KEY)
    monkeypatch.setenv("DEFAULT_COUNTRY_CODE", "55")
    return {"X-API-Key": API_KEY}


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def session_dispatcher(client_factory):
    return SessionDispatcher(client_factory=client_factory, country_code="55")


@pytest.fixture
def cloud_dispatcher():
    return CloudApiDispatcher(
        access_token="token-123",
        phone_number_id="1098765432",
        api_version="v22.0",
        country_code="55",
    )


@pytest.fixture
def cloud_client(api_env, cloud_dispatcher):
    with TestClient(create_app(cloud_dispatcher)) as client:
        yield client


@pytest.fixture
def session_client(api_env, session_dispatcher):
    with TestClient(create_app(session_dispatcher)) as client:
        yield client

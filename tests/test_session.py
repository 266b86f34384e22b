"""Tests for messaging/session.py."""

import asyncio

import pytest

from src.core.utils.utils import ProviderError
from src.messaging.session import (
    SessionDispatcher,
    SessionEvent,
    SessionState,
    transition,
)
from src.messaging.session_client import MediaFile
from src.models.messages import FailureKind, SendMessageRequest


def make_request(**fields):
    body = {"recipientPhone": "+55 11 99999-9999", "message": "Olá"}
    body.update(fields)
    return SendMessageRequest.model_validate(body)


async def connect(dispatcher, factory):
    await dispatcher.initialize()
    client = factory.last
    client.emit("authenticated")
    client.emit("ready", "5511988887777")
    return client


@pytest.mark.parametrize(
    "state, event, expected",
    [
        (SessionState.INITIALIZING, SessionEvent.QR, SessionState.QR_PENDING),
        (SessionState.QR_PENDING, SessionEvent.QR, SessionState.QR_PENDING),
        (
            SessionState.QR_PENDING,
            SessionEvent.AUTHENTICATED,
            SessionState.INITIALIZING,
        ),
        (SessionState.INITIALIZING, SessionEvent.READY, SessionState.READY),
        (
            SessionState.READY,
            SessionEvent.DISCONNECTED,
            SessionState.DISCONNECTED,
        ),
        (
            SessionState.QR_PENDING,
            SessionEvent.AUTH_FAILURE,
            SessionState.AUTH_FAILED,
        ),
        (SessionState.READY, SessionEvent.QR, SessionState.READY),
        (
            SessionState.UNINITIALIZED,
            SessionEvent.READY,
            SessionState.UNINITIALIZED,
        ),
    ],
)
def test_transition_table(state, event, expected):
    """Events move the session through its lifecycle."""
    assert transition(state, event) == expected


def test_initial_status(session_dispatcher):
    """A fresh dispatcher reports a disconnected session without a QR."""
    status = session_dispatcher.get_status().to_response()
    assert status == {
        "provider": "session",
        "isConnected": False,
        "isConfigured": True,
        "state": "uninitialized",
    }
    assert session_dispatcher.get_qr_code() is None


def test_concurrent_initialize_builds_one_client(
    session_dispatcher, client_factory
):
    """Two initialize calls in quick succession construct a single client."""

    async def scenario():
        await asyncio.gather(
            session_dispatcher.initialize(), session_dispatcher.initialize()
        )
        await session_dispatcher.initialize()

    asyncio.run(scenario())

    assert len(client_factory.created) == 1
    assert client_factory.last.started == 1
    assert session_dispatcher.state == SessionState.INITIALIZING


def test_initialize_is_noop_when_ready(session_dispatcher, client_factory):
    async def scenario():
        await connect(session_dispatcher, client_factory)
        await session_dispatcher.initialize()

    asyncio.run(scenario())
    assert len(client_factory.created) == 1
    assert session_dispatcher.state == SessionState.READY


def test_qr_lifecycle(session_dispatcher, client_factory):
    """The QR payload is held until the phone authenticates."""

    async def scenario():
        await session_dispatcher.initialize()
        client = client_factory.last

        client.emit("qr", "2@abc,def")
        assert session_dispatcher.state == SessionState.QR_PENDING
        assert session_dispatcher.get_qr_code() == "2@abc,def"
        assert session_dispatcher.get_status().qr_code == "2@abc,def"

        client.emit("authenticated")
        assert session_dispatcher.get_qr_code() is None

        client.emit("ready", "5511988887777")

    asyncio.run(scenario())

    status = session_dispatcher.get_status().to_response()
    assert status["isConnected"] is True
    assert status["phoneNumber"] == "5511988887777"
    assert "qrCode" not in status


def test_auth_failure_allows_new_initialize(session_dispatcher, client_factory):
    """After a failed login a new initialize starts a fresh client."""

    async def scenario():
        await session_dispatcher.initialize()
        first = client_factory.last
        first.emit("qr", "2@abc")
        first.emit("auth_failure", "bad session")
        assert session_dispatcher.state == SessionState.AUTH_FAILED
        assert session_dispatcher.get_qr_code() is None

        await session_dispatcher.initialize()
        # Events from the discarded client no longer count.
        first.emit("ready", "5511000000000")
        return first

    first = asyncio.run(scenario())

    assert len(client_factory.created) == 2
    assert first.closed is True
    assert session_dispatcher.state == SessionState.INITIALIZING


def test_disconnected_event_resets_readiness(
    session_dispatcher, client_factory
):
    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        client.emit("disconnected", "NAVIGATION")

    asyncio.run(scenario())
    status = session_dispatcher.get_status()
    assert status.is_connected is False
    assert status.state == "disconnected"


def test_failed_start_resets_state(client_factory):
    """A client that cannot start leaves the dispatcher uninitialized."""

    def broken_factory():
        client = client_factory()

        async def start():
            raise ProviderError("connection refused")

        client.start = start
        return client

    dispatcher = SessionDispatcher(client_factory=broken_factory)
    with pytest.raises(ProviderError):
        asyncio.run(dispatcher.initialize())
    assert dispatcher.state == SessionState.UNINITIALIZED


def test_wait_until_ready(session_dispatcher, client_factory):
    """Callers can await the end of a running initialization."""

    async def scenario():
        await session_dispatcher.initialize()
        waiter = asyncio.ensure_future(session_dispatcher.wait_until_ready(1))
        await asyncio.sleep(0)
        client_factory.last.emit("ready", "5511988887777")
        return await waiter

    assert asyncio.run(scenario()) is True


def test_wait_until_ready_times_out(session_dispatcher):
    async def scenario():
        await session_dispatcher.initialize()
        return await session_dispatcher.wait_until_ready(0.01)

    assert asyncio.run(scenario()) is False


def test_send_when_not_connected(session_dispatcher):
    """Sending before the session is ready fails without raising."""
    result = asyncio.run(session_dispatcher.send_message(make_request()))
    assert result.success is False
    assert result.failure == FailureKind.NOT_READY
    assert "not connected" in result.error


def test_send_text(session_dispatcher, client_factory):
    """Text is sent to the chat id resolved for the normalized number."""

    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        client.chat_ids["5511999999999"] = "5511999999999@c.us"
        result = await session_dispatcher.send_message(
            make_request(linkUrl="https://x.com")
        )
        return client, result

    client, result = asyncio.run(scenario())

    assert result.success is True
    assert result.message_id == "true_5511999999999@c.us_MSG1"
    assert client.sent == [
        ("text", "5511999999999@c.us", "Olá\n\n\U0001f517 https://x.com")
    ]


def test_send_to_unregistered_number(session_dispatcher, client_factory):
    async def scenario():
        await connect(session_dispatcher, client_factory)
        return await session_dispatcher.send_message(make_request())

    result = asyncio.run(scenario())
    assert result.success is False
    assert "not registered" in result.error


def test_send_media_uses_caption(client_factory):
    """Media is downloaded and sent with the text as caption."""
    loaded = []

    async def media_loader(url):
        loaded.append(url)
        return MediaFile("application/pdf", "boleto.pdf", "JVBERi0=")

    dispatcher = SessionDispatcher(
        client_factory=client_factory, media_loader=media_loader
    )

    async def scenario():
        client = await connect(dispatcher, client_factory)
        client.chat_ids["5511999999999"] = "5511999999999@c.us"
        return await dispatcher.send_message(
            make_request(mediaUrl="https://files.example.com/boleto.pdf")
        )

    result = asyncio.run(scenario())

    assert result.success is True
    assert loaded == ["https://files.example.com/boleto.pdf"]
    kind, chat_id, media, caption = client_factory.last.sent[0]
    assert kind == "file"
    assert media.filename == "boleto.pdf"
    assert caption == "Olá"


def test_provider_error_during_send(session_dispatcher, client_factory):
    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        client.chat_ids["5511999999999"] = "5511999999999@c.us"

        async def send_text(chat_id, text):
            raise ProviderError("Session closed", status=500)

        client.send_text = send_text
        return await session_dispatcher.send_message(make_request())

    result = asyncio.run(scenario())
    assert result.success is False
    assert result.error == "Session closed"


def test_template_not_supported(session_dispatcher):
    result = asyncio.run(
        session_dispatcher.send_template_message("11999999999", "welcome")
    )
    assert result.success is False
    assert result.failure == FailureKind.UNSUPPORTED


def test_disconnect_without_client_is_noop(session_dispatcher):
    asyncio.run(session_dispatcher.disconnect())
    assert session_dispatcher.state == SessionState.UNINITIALIZED


def test_disconnect_resets_state(session_dispatcher, client_factory):
    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        await session_dispatcher.disconnect()
        return client

    client = asyncio.run(scenario())
    assert client.destroyed is True
    status = session_dispatcher.get_status().to_response()
    assert status == {
        "provider": "session",
        "isConnected": False,
        "isConfigured": True,
        "state": "uninitialized",
    }


def test_disconnect_resets_state_when_logout_fails(
    session_dispatcher, client_factory
):
    """State is cleared even if logout raises; the error still surfaces."""

    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        client.logout_error = ProviderError("logout failed")
        with pytest.raises(ProviderError):
            await session_dispatcher.disconnect()
        return client

    client = asyncio.run(scenario())
    assert client.destroyed is True
    assert session_dispatcher.state == SessionState.UNINITIALIZED
    assert session_dispatcher.get_status().phone_number is None


def test_shutdown_closes_client(session_dispatcher, client_factory):
    async def scenario():
        client = await connect(session_dispatcher, client_factory)
        await session_dispatcher.shutdown()
        return client

    client = asyncio.run(scenario())
    assert client.closed is True
    assert client.destroyed is False

"""Dispatcher backed by a WhatsApp Web browser session.

The session lives outside this process (see ``session_client``); this
module owns the single client handle and tracks its lifecycle as a small
state machine driven by the client's events.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from src.config import settings
from src.core.utils.utils import ProviderError
from src.messaging.dispatcher import MessageDispatcher, compose_text
from src.messaging.session_client import (
    EVENT_AUTH_FAILURE,
    EVENT_AUTHENTICATED,
    EVENT_DISCONNECTED,
    EVENT_QR,
    EVENT_READY,
    MediaFile,
    WahaSessionClient,
    fetch_media,
)
from src.models.messages import (
    DispatchResult,
    FailureKind,
    ProviderStatus,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

NOT_CONNECTED_ERROR = (
    "WhatsApp is not connected. Initialize the client first."
)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    QR_PENDING = "qr_pending"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


class SessionEvent(str, Enum):
    QR = EVENT_QR
    AUTHENTICATED = EVENT_AUTHENTICATED
    READY = EVENT_READY
    DISCONNECTED = EVENT_DISCONNECTED
    AUTH_FAILURE = EVENT_AUTH_FAILURE


_TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.INITIALIZING, SessionEvent.QR): SessionState.QR_PENDING,
    (
        SessionState.INITIALIZING,
        SessionEvent.AUTHENTICATED,
    ): SessionState.INITIALIZING,
    (SessionState.INITIALIZING, SessionEvent.READY): SessionState.READY,
    (
        SessionState.INITIALIZING,
        SessionEvent.DISCONNECTED,
    ): SessionState.DISCONNECTED,
    (
        SessionState.INITIALIZING,
        SessionEvent.AUTH_FAILURE,
    ): SessionState.AUTH_FAILED,
    (SessionState.QR_PENDING, SessionEvent.QR): SessionState.QR_PENDING,
    (
        SessionState.QR_PENDING,
        SessionEvent.AUTHENTICATED,
    ): SessionState.INITIALIZING,
    (SessionState.QR_PENDING, SessionEvent.READY): SessionState.READY,
    (
        SessionState.QR_PENDING,
        SessionEvent.DISCONNECTED,
    ): SessionState.DISCONNECTED,
    (
        SessionState.QR_PENDING,
        SessionEvent.AUTH_FAILURE,
    ): SessionState.AUTH_FAILED,
    (SessionState.READY, SessionEvent.DISCONNECTED): SessionState.DISCONNECTED,
    (SessionState.READY, SessionEvent.AUTH_FAILURE): SessionState.AUTH_FAILED,
}

IN_PROGRESS = (SessionState.INITIALIZING, SessionState.QR_PENDING)


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """Next state for ``event``; events a state does not expect keep it."""
    return _TRANSITIONS.get((state, event), state)


class SessionDispatcher(MessageDispatcher):
    """Sends messages through a logged-in WhatsApp Web session.

    Args:
        client_factory: Builds a new session client; defaults to a WAHA
            client configured from the environment
        media_loader: Downloads media for ``mediaUrl`` sends
        country_code: Default country code for phone normalization
    """

    name = settings.PROVIDER_SESSION

    def __init__(
        self,
        client_factory: Optional[Callable[[], Any]] = None,
        media_loader: Optional[Callable[[str], Awaitable[MediaFile]]] = None,
        country_code: Optional[str] = None,
    ):
        super().__init__(country_code)
        self._client_factory = client_factory or WahaSessionClient
        self._media_loader = media_loader or fetch_media
        self._client = None
        self._lock = asyncio.Lock()
        self._settled = asyncio.Event()
        self.state = SessionState.UNINITIALIZED
        self._qr_code: Optional[str] = None
        self._phone_number: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self._client is not None and self.state == SessionState.READY

    async def initialize(self) -> None:
        """Start the session client unless it is ready or already starting.

        A second caller while a start is in flight returns at once; use
        ``wait_until_ready`` or poll the status to follow progress.
        """
        if self.is_ready:
            logger.info("WhatsApp client already initialized and ready")
            return
        if self.state in IN_PROGRESS:
            logger.info("WhatsApp client is already initializing")
            return

        # Claimed before the first await so concurrent callers see it.
        self.state = SessionState.INITIALIZING
        self._settled.clear()

        async with self._lock:
            logger.info("Initializing WhatsApp client...")
            try:
                if self._client is not None:
                    await self._client.close()
                    self._client = None

                client = self._client_factory()
                self._register(client)
                self._client = client
                await client.start()
            except Exception:
                logger.exception("Error initializing WhatsApp client")
                self._client = None
                self.state = SessionState.UNINITIALIZED
                self._settled.set()
                raise

    def _register(self, client: Any) -> None:
        for event in SessionEvent:
            client.on(
                event.value,
                lambda *args, event=event: self._on_client_event(
                    client, event, *args
                ),
            )

    def _on_client_event(
        self, client: Any, event: SessionEvent, *args: Any
    ) -> None:
        if client is not self._client:
            logger.debug(f"Ignoring {event.value} from a discarded client")
            return
        self.handle_event(event, args[0] if args else None)

    def handle_event(
        self, event: SessionEvent, payload: Optional[str] = None
    ) -> SessionState:
        """Apply a client event to the state machine."""
        previous = self.state
        if (previous, event) not in _TRANSITIONS:
            logger.debug(
                f"Event {event.value} ignored in state {previous.value}"
            )
            return previous
        self.state = transition(previous, event)

        if event is SessionEvent.QR:
            logger.info("QR Code received, scan to authenticate")
            self._qr_code = payload
        elif event is SessionEvent.AUTHENTICATED:
            logger.info("WhatsApp authenticated successfully!")
            self._qr_code = None
        elif event is SessionEvent.READY:
            self._qr_code = None
            self._phone_number = payload or getattr(
                self._client, "phone_number", None
            )
            logger.info(
                f"WhatsApp client is ready, phone: {self._phone_number}"
            )
            self._settled.set()
        elif event is SessionEvent.DISCONNECTED:
            logger.warning(f"WhatsApp client disconnected: {payload}")
            self._qr_code = None
            self._settled.set()
        elif event is SessionEvent.AUTH_FAILURE:
            logger.error(f"WhatsApp authentication failed: {payload}")
            self._qr_code = None
            self._settled.set()

        return self.state

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Wait for the running initialization to settle.

        Returns:
            True if the session ended up ready
        """
        if self.is_ready:
            return True
        if self.state not in IN_PROGRESS:
            return False
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready

    def get_qr_code(self) -> Optional[str]:
        return self._qr_code

    def get_status(self) -> ProviderStatus:
        return ProviderStatus(
            provider=self.name,
            is_connected=self.is_ready,
            is_configured=True,
            phone_number=self._phone_number,
            qr_code=self._qr_code,
            state=self.state.value,
        )

    async def send_message(self, request: SendMessageRequest) -> DispatchResult:
        client = self._client
        if client is None or not self.is_ready:
            logger.warning(
                f"Cannot send message to {request.recipient_phone}: "
                "WhatsApp is not connected"
            )
            return DispatchResult.failed(
                NOT_CONNECTED_ERROR, FailureKind.NOT_READY
            )

        phone = self.normalize(request.recipient_phone)
        logger.info(f"Sending message to {phone}")
        text = compose_text(request.message, request.link_url)

        try:
            chat_id = await client.get_number_id(phone)
            if not chat_id:
                logger.error(f"Number {phone} not registered on WhatsApp")
                return DispatchResult.failed(
                    f"The number {request.recipient_phone} is not "
                    "registered on WhatsApp.",
                    FailureKind.PROVIDER,
                )

            if request.media_url:
                logger.info(f"Sending message with media: {request.media_url}")
                media = await self._media_loader(request.media_url)
                message_id = await client.send_file(
                    chat_id, media, caption=text
                )
            else:
                logger.info(f"Sending text message to: {chat_id}")
                message_id = await client.send_text(chat_id, text)
        except ProviderError as e:
            logger.error(f"Error sending WhatsApp message to {phone}: {e}")
            return DispatchResult.failed(e.describe(), FailureKind.PROVIDER)

        if not message_id:
            logger.error(f"No message id returned for message to {phone}")
            return DispatchResult.failed(
                "Provider did not acknowledge the message",
                FailureKind.PROVIDER,
            )

        logger.info(f"Message sent successfully: {message_id}")
        return DispatchResult.sent(message_id)

    def _reset(self) -> None:
        self._client = None
        self.state = SessionState.UNINITIALIZED
        self._qr_code = None
        self._phone_number = None
        self._settled.clear()

    async def disconnect(self) -> None:
        """Log out and drop the client.

        Local state is cleared even when logging out fails; the error is
        raised after the cleanup.
        """
        client = self._client
        if client is None:
            return

        logger.info("Disconnecting WhatsApp client...")
        try:
            await client.logout()
        finally:
            try:
                await client.destroy()
            finally:
                self._reset()
        logger.info("WhatsApp client disconnected successfully")

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.close()

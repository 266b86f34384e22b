"""Client for a WAHA (WhatsApp HTTP API) browser session.

WAHA runs the headless WhatsApp Web browser and keeps the login on its own
disk. This client starts a named session, polls its status and turns the
status changes into the lifecycle events the session dispatcher listens to:

    qr(payload), authenticated(), ready(phone_number),
    disconnected(reason), auth_failure(reason)
"""

import asyncio
import base64
import logging
import mimetypes
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from src.config import settings
from src.core.utils.utils import ProviderError, download_binary, request_json

logger = logging.getLogger(__name__)

EVENT_QR = "qr"
EVENT_AUTHENTICATED = "authenticated"
EVENT_READY = "ready"
EVENT_DISCONNECTED = "disconnected"
EVENT_AUTH_FAILURE = "auth_failure"

STATUS_SCAN_QR = "SCAN_QR_CODE"
STATUS_WORKING = "WORKING"
STATUS_FAILED = "FAILED"
STATUS_STOPPED = "STOPPED"


@dataclass
class MediaFile:
    """Downloaded media ready to be sent inline."""

    mimetype: str
    filename: str
    data: str

    def as_payload(self) -> Dict[str, str]:
        return {
            "mimetype": self.mimetype,
            "filename": self.filename,
            "data": self.data,
        }


async def fetch_media(url: str) -> MediaFile:
    """Download ``url`` and base64-encode it for the session bridge."""
    content, content_type = await download_binary(url)
    filename = url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1] or "file"
    mimetype = content_type
    if not mimetype or mimetype == "application/octet-stream":
        guessed = mimetypes.guess_type(filename)[0]
        mimetype = guessed or "application/octet-stream"
    return MediaFile(
        mimetype=mimetype,
        filename=filename,
        data=base64.b64encode(content).decode("ascii"),
    )


def extract_message_id(data: Dict[str, Any]) -> Optional[str]:
    """Find the message id in a send response, whatever engine produced it."""
    message_id = data.get("id")
    if isinstance(message_id, dict):
        return message_id.get("_serialized") or message_id.get("id")
    if message_id:
        return str(message_id)
    key = data.get("key")
    if isinstance(key, dict) and key.get("id"):
        return str(key["id"])
    return None


class WahaSessionClient:
    """One WhatsApp Web session hosted by a WAHA server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[str] = None,
        api_key: Optional[str] = None,
        poll_interval: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.waha_base_url()).rstrip("/")
        self.session = session or settings.waha_session()
        self.api_key = api_key or settings.waha_api_key()
        self.poll_interval = poll_interval or settings.waha_poll_interval()
        self.phone_number: Optional[str] = None

        self._callbacks: Dict[str, List[Callable[..., None]]] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._last_qr: Optional[str] = None
        self._ready = False

    def on(self, event: str, callback: Callable[..., None]) -> None:
        """Register ``callback`` for a lifecycle event."""
        self._callbacks.setdefault(event, []).append(callback)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in self._callbacks.get(event, []):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Error in {event} handler")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def start(self) -> None:
        """Start the session on the bridge and begin watching its status."""
        try:
            await request_json(
                self._url("/api/sessions/start"),
                "POST",
                headers=self._headers(),
                json_data={"name": self.session},
            )
        except ProviderError as e:
            # 422 means the session is already running on the bridge.
            if e.status != 422:
                raise
            logger.info(f"Session {self.session} already started")

        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll())

    async def _poll(self) -> None:
        while True:
            try:
                finished = await self.refresh()
            except ProviderError as e:
                logger.warning(
                    f"Could not read status of session {self.session}: "
                    f"{e.describe()}"
                )
                finished = False
            except Exception:
                logger.exception(
                    f"Unexpected error polling session {self.session}"
                )
                finished = False
            if finished:
                return
            await asyncio.sleep(self.poll_interval)

    async def refresh(self) -> bool:
        """Read the session status once and emit the matching events.

        Returns:
            True when the session reached a state polling cannot leave
        """
        data = await request_json(
            self._url(f"/api/sessions/{self.session}"),
            headers=self._headers(),
        )
        status = data.get("status")
        finished = False

        if status == STATUS_SCAN_QR:
            qr = await self._fetch_qr()
            if qr and qr != self._last_qr:
                self._last_qr = qr
                self._emit(EVENT_QR, qr)

        elif status == STATUS_WORKING:
            if not self._ready:
                self._ready = True
                self._last_qr = None
                self.phone_number = _user_from_me(data.get("me"))
                self._emit(EVENT_AUTHENTICATED)
                self._emit(EVENT_READY, self.phone_number)

        elif status in (STATUS_FAILED, STATUS_STOPPED):
            # Polling ends here, so every exit emits exactly one event.
            finished = True
            if status == STATUS_FAILED and not self._ready:
                self._emit(
                    EVENT_AUTH_FAILURE,
                    f"Session {self.session} failed before authenticating",
                )
            else:
                self._ready = False
                self._emit(EVENT_DISCONNECTED, status)

        return finished

    async def _fetch_qr(self) -> Optional[str]:
        data = await request_json(
            self._url(f"/api/{self.session}/auth/qr"),
            headers=self._headers(),
            params={"format": "raw"},
        )
        return data.get("value")

    async def get_number_id(self, phone: str) -> Optional[str]:
        """Resolve a digit-only phone number to a chat id, None if unknown."""
        data = await request_json(
            self._url("/api/contacts/check-exists"),
            headers=self._headers(),
            params={"phone": phone, "session": self.session},
        )
        if not data.get("numberExists"):
            return None
        return data.get("chatId") or None

    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        data = await request_json(
            self._url("/api/sendText"),
            "POST",
            headers=self._headers(),
            json_data={
                "session": self.session,
                "chatId": chat_id,
                "text": text,
            },
        )
        return extract_message_id(data)

    async def send_file(
        self, chat_id: str, media: MediaFile, caption: str = ""
    ) -> Optional[str]:
        endpoint = (
            "/api/sendImage"
            if media.mimetype.startswith("image/")
            else "/api/sendFile"
        )
        data = await request_json(
            self._url(endpoint),
            "POST",
            headers=self._headers(),
            json_data={
                "session": self.session,
                "chatId": chat_id,
                "file": media.as_payload(),
                "caption": caption,
            },
        )
        return extract_message_id(data)

    async def logout(self) -> None:
        await request_json(
            self._url(f"/api/sessions/{self.session}/logout"),
            "POST",
            headers=self._headers(),
        )

    async def close(self) -> None:
        """Stop watching the session; the bridge keeps it running."""
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

    async def destroy(self) -> None:
        """Stop the session on the bridge and stop watching it."""
        await self.close()
        self._ready = False
        await request_json(
            self._url(f"/api/sessions/{self.session}/stop"),
            "POST",
            headers=self._headers(),
        )


def _user_from_me(me: Any) -> Optional[str]:
    if not isinstance(me, dict) or not me.get("id"):
        return None
    return str(me["id"]).split("@", 1)[0]

"""WhatsApp Business Cloud API dispatcher."""

import logging
from typing import Any, Dict, List, Optional

from src.config import settings
from src.core.utils.utils import ProviderError, request_json
from src.messaging.dispatcher import MessageDispatcher, compose_text
from src.models.messages import (
    DispatchResult,
    FailureKind,
    ProviderStatus,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")
NOT_CONFIGURED_ERROR = (
    "WhatsApp Cloud API is not configured: "
    "set WHATSAPP_TOKEN and PHONE_NUMBER_ID"
)


def redact(value: Optional[str], visible: int = 4) -> Optional[str]:
    """Mask all but the last ``visible`` characters of an identifier."""
    if not value:
        return None
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


def media_type_for(url: str) -> str:
    path = url.split("?", 1)[0].lower()
    return "image" if path.endswith(IMAGE_EXTENSIONS) else "document"


class CloudApiDispatcher(MessageDispatcher):
    """Sends messages through the Graph API ``/<phone-number-id>/messages``.

    Stateless apart from its credentials, so concurrent sends are
    independent of each other.
    """

    name = settings.PROVIDER_CLOUD

    def __init__(
        self,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        api_version: Optional[str] = None,
        country_code: Optional[str] = None,
    ):
        super().__init__(country_code)
        self.access_token = access_token or settings.whatsapp_token()
        self.phone_number_id = phone_number_id or settings.phone_number_id()
        self.api_version = api_version or settings.graph_api_version()

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return (
            f"{GRAPH_API_URL}/{self.api_version}/"
            f"{self.phone_number_id}/messages"
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def get_status(self) -> ProviderStatus:
        return ProviderStatus(
            provider=self.name,
            is_connected=self.is_configured,
            is_configured=self.is_configured,
            phone_number_id=redact(self.phone_number_id),
        )

    def build_message_payload(
        self, phone: str, request: SendMessageRequest
    ) -> Dict[str, Any]:
        """Build the Graph API body for a text or media message."""
        link_url = request.link_url or None
        text = compose_text(request.message, link_url)

        payload: Dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone,
        }

        if request.media_url:
            media_url = request.media_url
            media_type = media_type_for(media_url)
            media: Dict[str, Any] = {"link": media_url}
            if text:
                media["caption"] = text
            if media_type == "document":
                filename = media_url.split("?", 1)[0].rstrip("/")
                media["filename"] = filename.rsplit("/", 1)[-1] or "document"
            payload["type"] = media_type
            payload[media_type] = media
            return payload

        preview = request.link_preview
        if preview is None:
            preview = link_url is not None
        payload["type"] = "text"
        payload["text"] = {"preview_url": preview, "body": text}
        return payload

    def build_template_payload(
        self,
        phone: str,
        template_name: str,
        language_code: str,
        parameters: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        template: Dict[str, Any] = {
            "name": template_name,
            "language": {"code": language_code},
        }
        if parameters:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [
                        {"type": "text", "text": value} for value in parameters
                    ],
                }
            ]
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone,
            "type": "template",
            "template": template,
        }

    async def _post(
        self, payload: Dict[str, Any], phone: str
    ) -> DispatchResult:
        try:
            data = await request_json(
                self.messages_url,
                "POST",
                headers=self._headers(),
                json_data=payload,
            )
        except ProviderError as e:
            logger.error(
                f"Failed to send {payload['type']} message to {phone}: "
                f"{e.describe()}"
            )
            return DispatchResult.failed(e.describe(), FailureKind.PROVIDER)

        messages = data.get("messages")
        first = messages[0] if isinstance(messages, list) and messages else None
        message_id = first.get("id") if isinstance(first, dict) else None
        if not message_id:
            logger.error(f"No message id in Cloud API response: {data}")
            return DispatchResult.failed(
                "Provider response did not include a message id",
                FailureKind.PROVIDER,
            )

        logger.info(f"Message sent to {phone}: {message_id}")
        return DispatchResult.sent(message_id)

    async def send_message(self, request: SendMessageRequest) -> DispatchResult:
        if not self.is_configured:
            logger.error(
                f"Cannot send message to {request.recipient_phone}: "
                "Cloud API credentials missing"
            )
            return DispatchResult.failed(
                NOT_CONFIGURED_ERROR, FailureKind.CONFIGURATION
            )

        phone = self.normalize(request.recipient_phone)
        logger.info(f"Sending message to {phone}")
        payload = self.build_message_payload(phone, request)
        return await self._post(payload, phone)

    async def send_template_message(
        self,
        phone: str,
        template_name: str,
        language_code: str = "pt_BR",
        parameters: Optional[List[str]] = None,
    ) -> DispatchResult:
        if not self.is_configured:
            logger.error(
                f"Cannot send template {template_name} to {phone}: "
                "Cloud API credentials missing"
            )
            return DispatchResult.failed(
                NOT_CONFIGURED_ERROR, FailureKind.CONFIGURATION
            )

        canonical = self.normalize(phone)
        logger.info(f"Sending template {template_name} to {canonical}")
        payload = self.build_template_payload(
            canonical, template_name, language_code, parameters
        )
        return await self._post(payload, canonical)

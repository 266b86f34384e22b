"""Common interface for the WhatsApp message dispatchers."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from src.config import settings
from src.core.utils.phone import normalize_phone
from src.models.messages import (
    MAX_MESSAGE_LENGTH,
    DispatchResult,
    FailureKind,
    ProviderStatus,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

LINK_MARKER = "\U0001f517"


def truncate_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) > limit:
        logger.warning(f"Message truncated from {len(text)} to {limit}")
        return text[: limit - 3] + "..."
    return text


def compose_text(
    message: str,
    link_url: Optional[str] = None,
    limit: int = MAX_MESSAGE_LENGTH,
) -> str:
    """Build the text body, appending the link on its own line.

    Text over ``limit`` is shortened. Only the message part is cut, so
    the link line is always kept whole.
    """
    message = message or ""
    if not link_url:
        return truncate_text(message, limit)
    link_line = f"{LINK_MARKER} {link_url}"
    if not message:
        return link_line
    room = limit - len(link_line) - 2
    if room <= 3:
        return link_line
    return f"{truncate_text(message, room)}\n\n{link_line}"


class MessageDispatcher(ABC):
    """A provider that can deliver outbound WhatsApp messages.

    One instance is created at startup and shared by every request.
    """

    name = "unknown"

    def __init__(self, country_code: Optional[str] = None):
        self.country_code = country_code or settings.default_country_code()

    def normalize(self, phone: str) -> str:
        return normalize_phone(phone, self.country_code)

    async def initialize(self) -> None:
        """Prepare the provider connection. Default: nothing to do."""

    async def shutdown(self) -> None:
        """Release process resources without logging the account out."""

    async def disconnect(self) -> None:
        """Log the account out of the provider. Default: nothing to do."""

    def get_qr_code(self) -> Optional[str]:
        return None

    @abstractmethod
    def get_status(self) -> ProviderStatus:
        """Return the current connection snapshot."""

    @abstractmethod
    async def send_message(self, request: SendMessageRequest) -> DispatchResult:
        """Send a text, link or media message."""

    async def send_template_message(
        self,
        phone: str,
        template_name: str,
        language_code: str = "pt_BR",
        parameters: Optional[List[str]] = None,
    ) -> DispatchResult:
        return DispatchResult.failed(
            f"Template messages are not supported by the {self.name} provider",
            FailureKind.UNSUPPORTED,
        )


def build_dispatcher(provider: Optional[str] = None) -> MessageDispatcher:
    """Create the dispatcher selected by ``WHATSAPP_PROVIDER``.

    Raises:
        ValueError: If the provider name is not recognised
    """
    from src.messaging.cloud import CloudApiDispatcher
    from src.messaging.session import SessionDispatcher

    provider = (provider or settings.provider()).strip().lower()
    if provider == settings.PROVIDER_CLOUD:
        return CloudApiDispatcher()
    if provider == settings.PROVIDER_SESSION:
        return SessionDispatcher()
    raise ValueError(
        f"Unknown WHATSAPP_PROVIDER {provider!r}; "
        f"expected '{settings.PROVIDER_CLOUD}' or "
        f"'{settings.PROVIDER_SESSION}'"
    )

"""Request, result and status models for the WhatsApp relay."""

from enum import Enum
from typing import Annotated, List, Optional

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    TypeAdapter,
    ValidationError,
    model_validator,
)

MAX_MESSAGE_LENGTH = 4096
PHONE_PATTERN = r"^\+?[\d\s\-()]{8,20}$"

_http_url = TypeAdapter(HttpUrl)


def _check_url(value: str) -> str:
    # Keep the caller's spelling; HttpUrl would append a trailing slash.
    try:
        _http_url.validate_python(value)
    except ValidationError:
        raise ValueError("must be a valid http(s) URL")
    return value


UrlStr = Annotated[str, Field(max_length=2048), AfterValidator(_check_url)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SendMessageRequest(_CamelModel):
    """Body of POST /send."""

    recipient_phone: str = Field(
        ..., alias="recipientPhone", pattern=PHONE_PATTERN
    )
    recipient_name: Optional[str] = Field(
        None, alias="recipientName", max_length=255
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=MAX_MESSAGE_LENGTH,
        validation_alias=AliasChoices("message", "content"),
    )
    link_url: Optional[UrlStr] = Field(None, alias="linkUrl")
    link_preview: Optional[bool] = Field(None, alias="linkPreview")
    media_url: Optional[UrlStr] = Field(None, alias="mediaUrl")


class SendMediaRequest(SendMessageRequest):
    """Body of POST /send-media; the media URL is mandatory."""

    media_url: UrlStr = Field(..., alias="mediaUrl")


class SendLinkRequest(_CamelModel):
    """Body of POST /send-link."""

    recipient_phone: str = Field(
        ..., alias="recipientPhone", pattern=PHONE_PATTERN
    )
    recipient_name: Optional[str] = Field(
        None, alias="recipientName", max_length=255
    )
    link_url: UrlStr = Field(..., alias="linkUrl")
    message: str = Field(
        "",
        max_length=MAX_MESSAGE_LENGTH,
        validation_alias=AliasChoices("message", "content"),
    )
    link_preview: bool = Field(True, alias="linkPreview")

    def to_message_request(self) -> SendMessageRequest:
        # The message may be empty here, which SendMessageRequest rejects.
        return SendMessageRequest.model_construct(
            recipient_phone=self.recipient_phone,
            recipient_name=self.recipient_name,
            message=self.message,
            link_url=self.link_url,
            link_preview=self.link_preview,
            media_url=None,
        )


class SendTemplateRequest(_CamelModel):
    """Body of POST /send-template."""

    recipient_phone: str = Field(
        ..., alias="recipientPhone", pattern=PHONE_PATTERN
    )
    template_name: str = Field(
        ...,
        alias="templateName",
        min_length=1,
        max_length=512,
        pattern=r"^[a-z0-9_]+$",
    )
    language_code: str = Field(
        "pt_BR", alias="languageCode", pattern=r"^[a-z]{2,3}(_[A-Z]{2})?$"
    )
    parameters: Optional[List[str]] = Field(None, max_length=10)


class FailureKind(str, Enum):
    """Why a dispatch failed; decides the HTTP status of the response."""

    CONFIGURATION = "configuration"
    PROVIDER = "provider"
    NOT_READY = "not_ready"
    UNSUPPORTED = "unsupported"


class DispatchResult(BaseModel):
    """Outcome of a single send.

    A successful result always carries ``messageId`` and never ``error``;
    a failed one always carries ``error`` and never ``messageId``.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message_id: Optional[str] = Field(None, alias="messageId")
    error: Optional[str] = None
    failure: Optional[FailureKind] = Field(None, exclude=True)

    @model_validator(mode="after")
    def _check_outcome(self) -> "DispatchResult":
        if self.success:
            if not self.message_id:
                raise ValueError("successful result requires a messageId")
            if self.error is not None:
                raise ValueError("successful result cannot carry an error")
        else:
            if not self.error:
                raise ValueError("failed result requires an error")
            if self.message_id is not None:
                raise ValueError("failed result cannot carry a messageId")
        return self

    @classmethod
    def sent(cls, message_id: str) -> "DispatchResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(
        cls, error: str, failure: FailureKind = FailureKind.PROVIDER
    ) -> "DispatchResult":
        return cls(success=False, error=error, failure=failure)

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProviderStatus(BaseModel):
    """Snapshot of the provider connection, rebuilt on every request."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str
    is_connected: bool = Field(False, alias="isConnected")
    is_configured: bool = Field(False, alias="isConfigured")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    phone_number_id: Optional[str] = Field(None, alias="phoneNumberId")
    qr_code: Optional[str] = Field(None, alias="qrCode")
    state: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

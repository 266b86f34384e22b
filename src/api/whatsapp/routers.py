"""Outbound WhatsApp messaging routes."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.dependencies import get_dispatcher, rate_limit, require_api_key
from src.core.utils.qr import qr_to_data_url
from src.messaging.dispatcher import MessageDispatcher
from src.messaging.status import report_status
from src.models.messages import (
    DispatchResult,
    FailureKind,
    SendLinkRequest,
    SendMediaRequest,
    SendMessageRequest,
    SendTemplateRequest,
)

router = APIRouter(
    prefix="/api/whatsapp",
    tags=["WhatsApp"],
    dependencies=[Depends(rate_limit), Depends(require_api_key)],
)

logger = logging.getLogger(__name__)


def dispatch_response(
    result: DispatchResult, operation: str, recipient: str
) -> JSONResponse:
    """Turn a dispatch result into the HTTP response for it."""
    if result.success:
        return JSONResponse(content=result.to_response())

    logger.error(f"{operation} to {recipient} failed: {result.error}")
    status_code = 500 if result.failure == FailureKind.CONFIGURATION else 400
    return JSONResponse(content=result.to_response(), status_code=status_code)


@router.post("/initialize")
async def initialize(dispatcher: MessageDispatcher = Depends(get_dispatcher)):
    """Start the provider client so a QR code can be generated."""
    try:
        logger.info("Initializing WhatsApp client")
        await dispatcher.initialize()
    except Exception as e:
        logger.error(f"Error initializing WhatsApp: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e) or "Error initializing WhatsApp",
            },
        )

    if dispatcher.get_status().is_connected:
        message = "WhatsApp client is ready."
    else:
        message = (
            "WhatsApp client initialized. Wait for the QR code to be generated."
        )
    return {"success": True, "message": message}


@router.get("/status")
async def status(dispatcher: MessageDispatcher = Depends(get_dispatcher)):
    """Current connection status of the provider."""
    return report_status(dispatcher)


@router.get("/qr")
async def qr_code(dispatcher: MessageDispatcher = Depends(get_dispatcher)):
    """QR code to scan with the phone, as PNG data URL and raw payload."""
    qr_data = dispatcher.get_qr_code()
    if not qr_data:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "message": (
                    "QR code not available. Initialize the client first."
                ),
            },
        )

    try:
        qr_image = qr_to_data_url(qr_data)
    except Exception as e:
        logger.error(f"Error getting QR code: {e}")
        return JSONResponse(
            status_code=500, content={"success": False, "error": str(e)}
        )

    return {"success": True, "qrCode": qr_image, "qrData": qr_data}


@router.post("/send")
async def send_message(
    body: SendMessageRequest,
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
):
    """Send a text message, optionally with a link or media attachment."""
    logger.info(f"Sending message to {body.recipient_phone}")
    result = await dispatcher.send_message(body)
    return dispatch_response(result, "send", body.recipient_phone)


@router.post("/send-media")
async def send_media(
    body: SendMediaRequest,
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
):
    """Send a media message (image, PDF, ...) with the text as caption."""
    logger.info(f"Sending media message to {body.recipient_phone}")
    result = await dispatcher.send_message(body)
    return dispatch_response(result, "send-media", body.recipient_phone)


@router.post("/send-template")
async def send_template(
    body: SendTemplateRequest,
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
):
    """Send a pre-approved template message."""
    logger.info(
        f"Sending template {body.template_name} to {body.recipient_phone}"
    )
    result = await dispatcher.send_template_message(
        body.recipient_phone,
        body.template_name,
        body.language_code,
        body.parameters,
    )
    return dispatch_response(result, "send-template", body.recipient_phone)


@router.post("/send-link")
async def send_link(
    body: SendLinkRequest,
    dispatcher: MessageDispatcher = Depends(get_dispatcher),
):
    """Send a link, with an optional message above it."""
    logger.info(f"Sending link to {body.recipient_phone}")
    result = await dispatcher.send_message(body.to_message_request())
    return dispatch_response(result, "send-link", body.recipient_phone)


@router.post("/disconnect")
async def disconnect(dispatcher: MessageDispatcher = Depends(get_dispatcher)):
    """Log the WhatsApp account out and drop the client."""
    try:
        logger.info("Disconnecting WhatsApp client")
        await dispatcher.disconnect()
    except Exception as e:
        logger.error(f"Error disconnecting WhatsApp: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e) or "Error disconnecting WhatsApp",
            },
        )

    return {
        "success": True,
        "message": "WhatsApp client disconnected successfully",
    }

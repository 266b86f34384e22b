"""QR code rendering for the session login flow."""

import base64
import logging
from io import BytesIO

import qrcode
from PIL import Image

logger = logging.getLogger(__name__)


def render_qr_image(qr_data: str) -> Image.Image:
    """Render the raw QR payload into a PIL image."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(qr_data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")
    return image.get_image()


def qr_to_data_url(qr_data: str) -> str:
    """Encode a QR payload as a ``data:image/png;base64,...`` URL."""
    buffer = BytesIO()
    try:
        render_qr_image(qr_data).save(buffer, format="PNG")
    except Exception as e:
        logger.error(f"Failed to render QR code: {e}")
        raise
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"

"""WhatsApp messaging routes."""

from src.api.whatsapp import routers

__all__ = ["routers"]

"""HTTP API package for the WhatsApp relay."""

from src.api import dependencies, whatsapp

__all__ = ["dependencies", "whatsapp"]

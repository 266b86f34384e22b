"""Message dispatchers for the supported WhatsApp providers."""

from src.messaging import cloud, dispatcher, session, session_client, status

__all__ = ["cloud", "dispatcher", "session", "session_client", "status"]

"""Read-only status view over the active dispatcher."""

import logging
from typing import Any, Dict

from src.messaging.dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)


def report_status(dispatcher: MessageDispatcher) -> Dict[str, Any]:
    """Return the externally visible status; never raises."""
    try:
        return dispatcher.get_status().to_response()
    except Exception as e:
        logger.error(f"Error getting WhatsApp status: {e}")
        return {
            "provider": getattr(dispatcher, "name", "unknown"),
            "isConnected": False,
            "isConfigured": False,
        }

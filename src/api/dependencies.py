"""FastAPI dependencies shared by the WhatsApp routes."""

import hmac
import logging
import time
from typing import Dict, Optional, Tuple

from fastapi import Header, HTTPException, Request

from src.config import settings
from src.messaging.dispatcher import MessageDispatcher

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter keyed by client address.

    Counts live in memory, so every worker process limits on its own.
    """

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, now: Optional[float] = None) -> bool:
        """Count one request for ``key``; False once the budget is spent."""
        now = time.monotonic() if now is None else now
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0
            self._prune(now)
        count += 1
        self._windows[key] = (started, count)
        return count <= self.max_requests

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


async def rate_limit(request: Request):
    """Reject clients that exceeded the request budget of the window."""
    limiter: RateLimiter = request.app.state.rate_limiter
    client_ip = request.client.host if request.client else "unknown"
    if not limiter.hit(client_ip):
        logger.warning(f"Rate limit exceeded for {client_ip}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests from this IP, please try again later.",
        )


async def require_api_key(
    request: Request, x_api_key: Optional[str] = Header(None)
):
    """Check the X-API-Key header (or ``apiKey`` query parameter)."""
    api_key = x_api_key or request.query_params.get("apiKey")
    expected_key = settings.api_secret()

    if not expected_key:
        logger.error("API_SECRET is not configured")
        raise HTTPException(status_code=500, detail="API_SECRET not configured")

    if not api_key or not hmac.compare_digest(
        api_key.encode(), expected_key.encode()
    ):
        raise HTTPException(
            status_code=401, detail="Invalid or missing API key"
        )


def get_dispatcher(request: Request) -> MessageDispatcher:
    """The dispatcher created for this process at startup."""
    return request.app.state.dispatcher

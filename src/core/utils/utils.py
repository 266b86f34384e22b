"""Outbound HTTP helpers shared by the messaging providers."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


class ProviderError(Exception):
    """A call to the messaging provider failed.

    Attributes:
        message: Human readable reason, taken from the provider when it
            sent one
        status: HTTP status of the failed response, None for transport
            errors
        code: Provider specific error code, when present
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def describe(self) -> str:
        if self.code is not None:
            return f"{self.message} (code {self.code})"
        return self.message


def parse_error_body(status: int, body: str) -> Tuple[str, Optional[Any]]:
    """Pull the message and code out of a provider error response.

    Graph API errors look like ``{"error": {"message": ..., "code": ...}}``,
    the session bridge answers ``{"message": ...}``; anything else is
    returned as raw text.
    """
    try:
        data = json.loads(body)
    except ValueError:
        return body or f"Request failed: {status}", None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message") or f"Request failed: {status}"
            return str(message), error.get("code")
        if isinstance(error, str) and error:
            return error, None
        if data.get("message"):
            return str(data["message"]), None

    return body or f"Request failed: {status}", None


async def request_json(
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    json_data: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, str]] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Dict[str, Any]:
    """Call a JSON endpoint and return the decoded body.

    Args:
        url: The URL to call
        method: HTTP method (GET, POST, ...)
        headers: Optional headers to include in the request
        json_data: Optional JSON body
        params: Optional query string parameters
        timeout: Total timeout in seconds

    Returns:
        The JSON response data, or an empty dict for empty bodies

    Raises:
        ProviderError: If the request fails or the provider answers >= 400
    """
    try:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(
                method.upper(),
                url,
                headers=headers,
                json=json_data,
                params=params,
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    logger.error(
                        f"Provider API error ({response.status}): {body}"
                    )
                    message, code = parse_error_body(response.status, body)
                    raise ProviderError(
                        message, status=response.status, code=code
                    )
                if not body:
                    return {}
                try:
                    data = json.loads(body)
                except ValueError:
                    raise ProviderError(
                        "Provider returned a non-JSON response",
                        status=response.status,
                    )
                return data if isinstance(data, dict) else {"data": data}

    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Request error: {str(e)}")
        raise ProviderError(str(e) or "Failed to complete the request")


async def download_binary(
    url: str, headers: Optional[Dict[str, str]] = None
) -> Tuple[bytes, Optional[str]]:
    """Download binary data from a URL.

    Args:
        url: The URL to download from
        headers: Optional headers to include in the request

    Returns:
        The downloaded bytes and the response content type, if any

    Raises:
        ProviderError: If the download fails
    """
    try:
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Download error: {error_text}")
                    raise ProviderError(
                        f"Failed to download media: {response.status}",
                        status=response.status,
                    )
                return await response.read(), response.content_type
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"Download error: {str(e)}")
        raise ProviderError(f"Failed to download media: {str(e)}")

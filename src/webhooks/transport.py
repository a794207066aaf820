"""
HTTP transport for webhook delivery.

Posts signed bodies to receivers and classifies the outcome: any completed
response below 500 is returned to the caller, while timeouts, network
failures and 5xx responses raise ``WebhookTransportError``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientTimeout, ClientError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """A completed HTTP round trip."""
    status: int
    body: str
    duration_ms: int

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


class WebhookTransportError(Exception):
    """A retryable delivery failure."""

    TIMEOUT = "timeout"
    NETWORK = "network_error"
    SERVER_ERROR = "server_error"

    def __init__(
        self,
        message: str,
        kind: str,
        status: Optional[int] = None,
        body: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.body = body


class WebhookTransport:
    """Sends webhook requests with aiohttp."""

    def __init__(self, timeout_seconds: float = 30.0, response_body_limit: int = 1000):
        self.timeout_seconds = timeout_seconds
        self.response_body_limit = response_body_limit

    async def send(self, url: str, body: bytes, headers: Dict[str, str]) -> TransportResponse:
        """
        POST ``body`` to ``url``.

        Args:
            url: Receiver URL
            body: Exact bytes to send
            headers: Outbound headers

        Returns:
            The completed response when its status is below 500

        Raises:
            WebhookTransportError: on timeout, network failure or 5xx
        """
        timeout = ClientTimeout(total=self.timeout_seconds)
        start_time = time.monotonic()

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    url,
                    data=body,
                    headers=headers,
                    allow_redirects=False  # Don't follow redirects for security
                ) as response:
                    raw = await response.read()
                    status = response.status

        except asyncio.TimeoutError:
            raise WebhookTransportError(
                f"Request timeout after {self.timeout_seconds:g} seconds",
                WebhookTransportError.TIMEOUT
            )

        except ClientError as e:
            raise WebhookTransportError(
                f"HTTP client error: {str(e) or e.__class__.__name__}",
                WebhookTransportError.NETWORK
            )

        duration_ms = int((time.monotonic() - start_time) * 1000)
        text = raw.decode("utf-8", errors="replace")[:self.response_body_limit]

        if status >= 500:
            logger.debug(f"Webhook receiver {url} answered {status} in {duration_ms}ms")
            raise WebhookTransportError(
                f"Server error: {status}",
                WebhookTransportError.SERVER_ERROR,
                status=status,
                body=text
            )

        return TransportResponse(status=status, body=text, duration_ms=duration_ms)

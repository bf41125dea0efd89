"""
Outbound webhook delivery with rate limiting and retries.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Dict, Optional

import aiohttp
import backoff

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Raised when the webhook endpoint rejects a message."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Webhook returned status {status}: {body[:200]}")


class RateLimiter:
    """Rate limiter for API calls."""

    def __init__(self, max_calls: int, time_window: float):
        self.max_calls = max_calls
        self.time_window = time_window
        self.calls = deque()

    async def acquire(self):
        """Acquire permission to make an API call."""
        now = time.monotonic()

        while self.calls and now - self.calls[0] > self.time_window:
            self.calls.popleft()

        if len(self.calls) >= self.max_calls:
            wait_time = self.time_window - (now - self.calls[0])
            if wait_time > 0:
                logger.info(f"Rate limit reached, waiting {wait_time:.2f} seconds")
                await asyncio.sleep(wait_time)
            self.calls.popleft()

        self.calls.append(time.monotonic())


class WebhookSender:
    """Posts plain text messages to a single webhook URL."""

    TIMEOUT = 10

    def __init__(self, session: aiohttp.ClientSession, url: str,
                 rate_limiter: Optional[RateLimiter] = None):
        self.session = session
        self.url = url
        # Discord allows 30 webhook messages per minute per channel
        self.rate_limiter = rate_limiter or RateLimiter(max_calls=30, time_window=60)

    @staticmethod
    def build_payload(content: str, username: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": content}
        if username:
            payload["username"] = username
        return payload

    async def send(self, content: str, username: Optional[str] = None) -> None:
        """Send text content, optionally overriding the webhook's username."""
        # One rate-limit slot per message, however many attempts the post takes
        await self.rate_limiter.acquire()
        await self._post(self.build_payload(content, username))

    @backoff.on_exception(backoff.expo, (aiohttp.ClientError, asyncio.TimeoutError), max_tries=3)
    async def _post(self, payload: Dict[str, Any]) -> None:
        async with self.session.post(
            self.url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=self.TIMEOUT)
        ) as response:
            if response.status >= 300:
                raise WebhookError(response.status, await response.text())
            logger.debug(f"Webhook accepted message (status {response.status})")

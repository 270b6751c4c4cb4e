"""
HTTP fetcher for monitor URLs.

Features:
- Browser-like headers with a rotating user agent
- Retry with exponential backoff (jittered) on timeouts, transport errors and 5xx
- Honors Retry-After on HTTP 429
- Streams the body and aborts past the size limit
- Pretty-prints JSON for api monitors (and JSON content types)
"""

import asyncio
import json
import random
from typing import Dict, Optional

import httpx
import logging

from core.config import settings
from core.exceptions import ContentTooLargeError, FetchError, RateLimitError
from models.base import ContentType
from schemas.results import FetchResult

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.1) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
]

MAX_BACKOFF_SECONDS = 10.0


class HTTPFetcher:
    """
    Fetch monitor content over HTTP.

    Attributes:
        timeout: Per-request timeout in seconds
        max_retries: Retries after the first attempt
        max_bytes: Body size limit
        retry_delay: Initial backoff delay in seconds
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        max_bytes: Optional[int] = None,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.FETCH_MAX_RETRIES
        self.max_bytes = max_bytes if max_bytes is not None else settings.FETCH_MAX_BYTES
        self.retry_delay = retry_delay
        self.transport = transport

    def _build_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    async def check(self, monitor) -> FetchResult:
        """
        Fetch a monitor's URL.

        Never raises; failures come back as FetchResult(success=False).
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                status_code, text, content_type = await self._fetch_with_retry(client, monitor.url)

            if status_code >= 400:
                return FetchResult(
                    success=False,
                    status_code=status_code,
                    error=f"HTTP {status_code}",
                )

            content = self._process_content(text, monitor, content_type)
            return FetchResult(
                success=True,
                content=content,
                content_type=content_type or None,
                status_code=status_code,
            )

        except FetchError as e:
            logger.warning(f"Fetch failed for {monitor.url}: {e.message}")
            return FetchResult(
                success=False,
                status_code=e.context.get("status_code"),
                error=e.message,
            )

    async def _fetch_with_retry(self, client: httpx.AsyncClient, url: str):
        """
        GET with retries.

        Returns:
            (status_code, body text, content type)

        Raises:
            FetchError: Transport failure after all retries, or invalid JSON
            RateLimitError: Still rate limited after all retries
            ContentTooLargeError: Body exceeds max_bytes
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = min(self.retry_delay * (2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)
                await asyncio.sleep(delay + random.random() * delay * 0.3)

            try:
                async with client.stream("GET", url, headers=self._build_headers()) as response:
                    if response.status_code == 429:
                        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                        if attempt < self.max_retries:
                            if retry_after:
                                logger.warning(f"Rate limited by {url}. Retrying after {retry_after} seconds")
                                await asyncio.sleep(retry_after)
                            continue
                        raise RateLimitError(
                            f"Rate limit exceeded for {url}",
                            context={"url": url, "status_code": 429, "attempts": attempt + 1},
                            retry_after=retry_after,
                        )

                    if response.status_code >= 500 and attempt < self.max_retries:
                        logger.warning(
                            f"Server error {response.status_code} from {url} "
                            f"(attempt {attempt + 1}/{self.max_retries + 1})"
                        )
                        continue

                    body = await self._read_limited(response, url)
                    content_type = response.headers.get("content-type", "")
                    encoding = response.encoding or "utf-8"
                    return response.status_code, body.decode(encoding, errors="replace"), content_type

            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exception = e
                logger.warning(f"Request to {url} failed on attempt {attempt + 1}: {e}")

        raise FetchError(
            f"Failed to fetch {url} after {self.max_retries + 1} attempts",
            context={"url": url, "attempts": self.max_retries + 1},
            original_exception=last_exception,
        )

    async def _read_limited(self, response: httpx.Response, url: str) -> bytes:
        length = response.headers.get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            raise ContentTooLargeError(
                f"Response too large (max {self.max_bytes} bytes)",
                context={"url": url, "content_length": int(length)},
            )

        received = bytearray()
        async for chunk in response.aiter_bytes():
            received.extend(chunk)
            if len(received) > self.max_bytes:
                raise ContentTooLargeError(
                    f"Response too large (max {self.max_bytes} bytes)",
                    context={"url": url},
                )
        return bytes(received)

    def _process_content(self, text: str, monitor, content_type: str) -> str:
        if monitor.content_type == ContentType.API or "application/json" in (content_type or ""):
            try:
                return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
            except ValueError as e:
                raise FetchError(
                    "Invalid JSON response",
                    context={"url": monitor.url},
                    original_exception=e,
                )
        return text


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None

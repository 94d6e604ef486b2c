"""
Async HTTP client for document downloads.

Built on httpx with:
- Per-domain rate limiting
- Exponential backoff retry on network errors (tenacity)
- User-agent rotation
- Cookie hand-over from a browser session, so downloads behind a login
  reuse the adapter's authenticated session
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import TransientNetworkError

logger = structlog.get_logger(__name__)


# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
]

TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


@dataclass
class FetchedResource:
    """Downloaded resource with the metadata acquisition needs."""
    url: str
    final_url: str
    status_code: int
    content: bytes
    content_type: str = ""
    filename: Optional[str] = None  # from Content-Disposition


@dataclass
class RateLimiter:
    """Per-domain rate limiter."""
    requests_per_second: float = 2.0
    last_request: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def acquire(self) -> None:
        """Wait for rate limit slot."""
        async with self.lock:
            now = time.monotonic()
            min_interval = 1.0 / self.requests_per_second
            elapsed = now - self.last_request

            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)

            self.last_request = time.monotonic()


def filename_from_disposition(header: str) -> Optional[str]:
    """
    Extract the filename from a Content-Disposition header.

    Handles both filename="x.pdf" and RFC 5987 filename*=UTF-8''x.pdf.
    """
    if not header:
        return None
    match = re.search(r"filename\*\s*=\s*[^']*''([^;]+)", header, re.IGNORECASE)
    if match:
        return unquote(match.group(1).strip().strip('"'))
    match = re.search(r'filename\s*=\s*"?([^";]+)"?', header, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    return None


class HttpClient:
    """
    Async HTTP client with rate limiting and retries.

    Usage:
        async with HttpClient() as client:
            client.set_cookies(await browser_context.cookies())
            resource = await client.fetch("https://example.com/edital.pdf")
    """

    def __init__(
        self,
        requests_per_second: float = 2.0,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_wait_min: float = 1.0,
        retry_wait_max: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            requests_per_second: Rate limit per domain
            timeout: Request timeout in seconds
            max_retries: Maximum attempts for transient network errors
            retry_wait_min: Lower bound of the exponential backoff
            retry_wait_max: Upper bound of the exponential backoff
            transport: Optional httpx transport (used by tests)
        """
        self.requests_per_second = requests_per_second
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._rate_limiters: dict[str, RateLimiter] = {}
        self._user_agent_index = 0

    async def __aenter__(self) -> "HttpClient":
        """Enter async context."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=True,
            headers={"Accept-Language": "pt-BR,pt;q=0.9,en;q=0.8"},
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        await self.close()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def set_cookies(self, cookies: Iterable[dict]) -> None:
        """
        Load cookies exported by a browser context.

        Args:
            cookies: Playwright-style dicts with name, value, domain, path
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        count = 0
        for cookie in cookies:
            self._client.cookies.set(
                cookie["name"],
                cookie["value"],
                domain=cookie.get("domain", ""),
                path=cookie.get("path", "/"),
            )
            count += 1
        logger.debug("cookies_loaded", count=count)

    def _get_rate_limiter(self, url: str) -> RateLimiter:
        """Get or create rate limiter for domain."""
        domain = urlparse(url).netloc
        if domain not in self._rate_limiters:
            self._rate_limiters[domain] = RateLimiter(
                requests_per_second=self.requests_per_second
            )
        return self._rate_limiters[domain]

    def _get_user_agent(self) -> str:
        """Get next user agent in rotation."""
        ua = USER_AGENTS[self._user_agent_index % len(USER_AGENTS)]
        self._user_agent_index += 1
        return ua

    async def _do_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute HTTP request, retrying transient network errors."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        headers = kwargs.pop("headers", {})
        headers["User-Agent"] = self._get_user_agent()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=self.retry_wait_min, max=self.retry_wait_max),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._client.request(method, url, headers=headers, **kwargs)
                    response.raise_for_status()
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.warning("network_retries_exhausted", url=url, error=str(last))
            raise TransientNetworkError(url, str(last) or type(last).__name__) from last

        return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        """
        GET request with rate limiting.

        Args:
            url: URL to fetch
            **kwargs: Additional httpx arguments

        Returns:
            httpx.Response object

        Raises:
            TransientNetworkError: Network errors persisted through retries
            httpx.HTTPStatusError: Server answered with an error status
        """
        limiter = self._get_rate_limiter(url)
        await limiter.acquire()

        logger.debug("http_get", url=url)
        return await self._do_request("GET", url, **kwargs)

    async def fetch(self, url: str, referer: Optional[str] = None) -> FetchedResource:
        """
        Download a resource into memory.

        Args:
            url: Resource URL
            referer: Optional Referer header (some portals check it)

        Returns:
            FetchedResource
        """
        headers = {"Referer": referer} if referer else {}
        response = await self.get(url, headers=headers)
        return FetchedResource(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type", ""),
            filename=filename_from_disposition(response.headers.get("content-disposition", "")),
        )

"""
Resilient page navigation with bounded retry and exponential backoff.

Every adapter navigates through ResilientNavigator instead of calling
page.goto() directly. An attempt only counts as successful when the loaded
page passes a success predicate: a real title, no error page, and (when a
host is expected) no silent redirect to another domain.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .errors import NavigationExhausted, first_line

logger = structlog.get_logger(__name__)


# Title fragments that mark an error page
ERROR_TITLE_MARKERS = [
    "error",
    "erro",
    "not found",
    "não encontrada",
    "nao encontrada",
    "404",
    "500",
    "service unavailable",
    "acesso negado",
]


@dataclass
class PageState:
    """What the navigator observed after an attempt."""
    requested_url: str
    url: str
    title: str
    status: Optional[int] = None


@dataclass
class NavigationResult:
    """Outcome of a successful navigation."""
    url: str
    final_url: str
    title: str
    attempts: int


SuccessPredicate = Callable[[PageState], bool]


def host_matches(url: str, expected_host: str) -> bool:
    """True when url's host is expected_host or one of its subdomains."""
    host = (urlparse(url).hostname or "").lower()
    expected = expected_host.lower()
    return host == expected or host.endswith("." + expected)


def failure_reason(state: PageState, expected_host: Optional[str] = None) -> Optional[str]:
    """
    Explain why a page state is not a successful load.

    Args:
        state: Observed page state
        expected_host: Host the final URL must belong to

    Returns:
        Reason string, or None if the page looks fine
    """
    title = (state.title or "").strip()
    if not title:
        return "empty title"

    title_lower = title.lower()
    for marker in ERROR_TITLE_MARKERS:
        if marker in title_lower:
            return f"error page ({title[:60]})"

    if state.status is not None and state.status >= 400:
        return f"http status {state.status}"

    if expected_host and not host_matches(state.url, expected_host):
        return f"redirected to {urlparse(state.url).hostname}"

    return None


def default_success_predicate(expected_host: Optional[str] = None) -> SuccessPredicate:
    """Build the standard predicate: valid title, no error page, host check."""
    def predicate(state: PageState) -> bool:
        return failure_reason(state, expected_host) is None
    return predicate


class ResilientNavigator:
    """
    Navigate a playwright page with retry and exponential backoff.

    After failed attempt n the navigator waits base_delay * 2 ** (n - 1)
    seconds: with the defaults that is 5s, then 10s.

    Usage:
        navigator = ResilientNavigator(page)
        result = await navigator.navigate(url, expected_host="fapes.es.gov.br")
    """

    def __init__(
        self,
        page: Page,
        max_attempts: int = 3,
        base_delay: float = 5.0,
        timeout_ms: int = 60000,
        wait_until: str = "domcontentloaded",
        ready_state: str = "load",
        settle_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize navigator.

        Args:
            page: Playwright page to drive
            max_attempts: Default attempt budget per navigation
            base_delay: Backoff base in seconds
            timeout_ms: Per-attempt navigation timeout
            wait_until: goto() wait condition
            ready_state: Load state awaited after goto()
            settle_delay: Extra pause after the page is ready
            sleep: Awaitable sleep function (injectable for tests)
        """
        self.page = page
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout_ms = timeout_ms
        self.wait_until = wait_until
        self.ready_state = ready_state
        self.settle_delay = settle_delay
        self.sleep = sleep
        self.logger = logger.bind(navigator=self.__class__.__name__)

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    async def navigate(
        self,
        url: str,
        max_attempts: Optional[int] = None,
        success_predicate: Optional[SuccessPredicate] = None,
        expected_host: Optional[str] = None,
    ) -> NavigationResult:
        """
        Navigate to url until the success predicate holds.

        Args:
            url: Target URL
            max_attempts: Attempt budget (defaults to the navigator's)
            success_predicate: Custom check over PageState
            expected_host: Host the final URL must stay on

        Returns:
            NavigationResult

        Raises:
            NavigationExhausted: If every attempt failed
        """
        attempts = max_attempts or self.max_attempts
        predicate = success_predicate or default_success_predicate(expected_host)
        last_reason: Optional[str] = None

        for attempt in range(1, attempts + 1):
            try:
                state = await self._attempt(url)
            except PlaywrightError as e:
                last_reason = first_line(e)
            else:
                if predicate(state):
                    if attempt > 1:
                        self.logger.info("navigation_recovered", url=url, attempts=attempt)
                    return NavigationResult(
                        url=url,
                        final_url=state.url,
                        title=state.title,
                        attempts=attempt,
                    )
                last_reason = failure_reason(state, expected_host) or "success check failed"

            if attempt < attempts:
                delay = self.backoff_delay(attempt)
                self.logger.warning(
                    "navigation_retry",
                    url=url,
                    attempt=attempt,
                    max_attempts=attempts,
                    delay=delay,
                    reason=last_reason,
                )
                await self.sleep(delay)

        self.logger.error("navigation_exhausted", url=url, attempts=attempts, reason=last_reason)
        raise NavigationExhausted(url, attempts, last_reason)

    async def _attempt(self, url: str) -> PageState:
        """Run one navigation attempt and capture the page state."""
        response = await self.page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)

        try:
            await self.page.wait_for_load_state(self.ready_state, timeout=self.timeout_ms)
        except PlaywrightError as e:
            # Slow trackers keep some pages from ever reaching the state
            self.logger.debug("ready_state_timeout", url=url, state=self.ready_state, error=str(e))

        if self.settle_delay > 0:
            await self.sleep(self.settle_delay)

        return PageState(
            requested_url=url,
            url=self.page.url,
            title=await self.page.title(),
            status=response.status if response is not None else None,
        )

"""
Playwright browser session owned by a single adapter.

One Chromium instance, one context, one listing page. Secondary pages
(detail pages, intermediate result pages) are opened on demand in the same
context so they share cookies with the listing page and with downloads.
"""

from typing import Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Dialog, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from editais_scraper.core.discovery import PageSnapshot

logger = structlog.get_logger(__name__)


LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",  # Overcome limited resource problems
    "--disable-gpu",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

VIEWPORT = {"width": 1920, "height": 1080}
LOCALE = "pt-BR"


async def _accept_dialog(dialog: Dialog) -> None:
    logger.debug("dialog_accepted", type=dialog.type, message=dialog.message[:120])
    await dialog.accept()


class BrowserSession:
    """
    Chromium session for one adapter.

    Usage:
        session = BrowserSession(headless=True)
        page = await session.start()
        ...
        await session.close()
    """

    def __init__(self, headless: bool = True, launch_args: Optional[list[str]] = None):
        self.headless = headless
        self.launch_args = launch_args if launch_args is not None else list(LAUNCH_ARGS)

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    async def start(self) -> Page:
        """Launch the browser and open the listing page."""
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=self.launch_args,
        )
        self.context = await self.browser.new_context(viewport=VIEWPORT, locale=LOCALE)
        self.page = await self.new_page()
        logger.info("browser_started", headless=self.headless)
        return self.page

    async def new_page(self) -> Page:
        """Open a page in the session context with dialogs auto-accepted."""
        if self.context is None:
            raise RuntimeError("Browser session not started")
        page = await self.context.new_page()
        page.on("dialog", _accept_dialog)
        return page

    async def snapshot(self, page: Page) -> PageSnapshot:
        """Capture a page's HTML and the HTML of its child frames."""
        frames = []
        for frame in page.frames[1:]:
            try:
                html = await frame.content()
            except PlaywrightError as e:
                logger.debug("frame_content_failed", frame=frame.url, error=str(e))
                continue
            frames.append(PageSnapshot(url=frame.url, html=html))
        return PageSnapshot(url=page.url, html=await page.content(), frames=frames)

    async def cookies(self) -> list[dict]:
        if self.context is None:
            return []
        return await self.context.cookies()

    async def close(self) -> None:
        """Release every resource; safe to call twice or after a failed start."""
        if self.context is not None:
            try:
                await self.context.close()
            except PlaywrightError as e:
                logger.debug("context_close_failed", error=str(e))
            self.context = None
            self.page = None

        if self.browser is not None:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                logger.debug("browser_close_failed", error=str(e))
            self.browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("browser_closed")

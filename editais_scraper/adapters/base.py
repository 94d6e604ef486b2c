"""
Base class for site adapters.

An adapter turns one funding portal into a list of CallRecords with their
documents acquired. The base class owns the browser session, the HTTP
client and the acquisition pipeline; subclasses only implement collect().
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from editais_scraper.config.loader import EngineConfig, SiteConfig
from editais_scraper.core.acquisition import ArtifactStore, DocumentAcquirer
from editais_scraper.core.consolidation import identity_key
from editais_scraper.core.converter import FormatNormalizer
from editais_scraper.core.discovery import DiscoveredLink, LinkDiscoverer, PageSnapshot, normalize_url_key
from editais_scraper.core.errors import AdapterFatalError, NavigationExhausted
from editais_scraper.core.http_client import HttpClient
from editais_scraper.core.models import CallRecord
from editais_scraper.core.navigator import NavigationResult, ResilientNavigator

from .browser import BrowserSession

logger = structlog.get_logger(__name__)


@dataclass
class AdapterStats:
    """Counters reported in the run summary."""
    listings_seen: int = 0
    records_emitted: int = 0
    records_failed: int = 0
    documents_discovered: int = 0
    documents_acquired: int = 0
    documents_failed: int = 0
    documents_reused: int = 0


class SiteAdapter(ABC):
    """
    Abstract base class for site adapters.

    Lifecycle: run() opens the browser session and HTTP client, then calls
    collect(); cleanup() releases both and must always be awaited, also
    when run() raised.
    """

    name = "base"

    def __init__(
        self,
        site: SiteConfig,
        engine: EngineConfig,
        store: ArtifactStore,
        session_factory: Optional[Callable[[], Any]] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize adapter.

        Args:
            site: Site configuration
            engine: Engine-wide settings
            store: Shared artifact store
            session_factory: Builds the browser session (BrowserSession by default)
            http_transport: Optional httpx transport for downloads (used by tests)
            sleep: Awaitable sleep function (injectable for tests)
        """
        self.site = site
        self.engine = engine
        self.store = store
        self.session_factory = session_factory or (lambda: BrowserSession(headless=engine.headless))
        self.http_transport = http_transport
        self.sleep = sleep

        self.discoverer = LinkDiscoverer(engine.discovery.merged(site.discovery))
        self.stats = AdapterStats()
        self.logger = logger.bind(adapter=self.name)

        self.session = None
        self.page: Optional[Page] = None
        self.navigator: Optional[ResilientNavigator] = None
        self.http_client: Optional[HttpClient] = None
        self.acquirer: Optional[DocumentAcquirer] = None

    async def open(self) -> None:
        """Start the browser session and the download client."""
        self.session = self.session_factory()
        self.page = await self.session.start()
        self.navigator = self._make_navigator(self.page)

        http = self.engine.http
        self.http_client = HttpClient(
            requests_per_second=http.requests_per_second,
            timeout=http.timeout,
            max_retries=http.max_retries,
            transport=self.http_transport,
        )
        await self.http_client.__aenter__()

        conversion = self.engine.conversion
        self.acquirer = DocumentAcquirer(
            self.http_client,
            self.store,
            FormatNormalizer(
                soffice_binary=conversion.soffice_binary,
                timeout=conversion.timeout,
                enabled=conversion.enabled,
            ),
            delay=self.engine.download_delay,
            sleep=self.sleep,
        )

    async def run(self) -> list[CallRecord]:
        """
        Collect the site's calls.

        Returns:
            CallRecords with DocumentReferences attached

        Raises:
            AdapterFatalError: If the site cannot be crawled at all
        """
        self.logger.info("adapter_started", site=self.site.site_id)
        await self.open()
        records = await self.collect()
        self.stats.records_emitted = len(records)
        self.logger.info("adapter_finished", **asdict(self.stats))
        return records

    @abstractmethod
    async def collect(self) -> list[CallRecord]:
        """Crawl the site and return its records."""
        pass

    async def cleanup(self) -> None:
        """Release the HTTP client and the browser. Idempotent."""
        if self.http_client is not None:
            await self.http_client.close()
            self.http_client = None
        if self.session is not None:
            await self.session.close()
            self.session = None
        self.page = None
        self.navigator = None
        self.acquirer = None

    def _make_navigator(self, page: Page) -> ResilientNavigator:
        nav = self.engine.navigation
        return ResilientNavigator(
            page,
            max_attempts=nav.max_attempts,
            base_delay=nav.base_delay,
            timeout_ms=nav.timeout_ms,
            wait_until=nav.wait_until,
            settle_delay=nav.settle_delay,
            sleep=self.sleep,
        )

    async def navigate(
        self,
        url: str,
        expected_host: Optional[str] = None,
        page: Optional[Page] = None,
    ) -> NavigationResult:
        """Navigate the listing page (or another page) with retry."""
        navigator = self.navigator if page is None else self._make_navigator(page)
        return await navigator.navigate(url, expected_host=expected_host)

    async def open_listing(self, url: Optional[str] = None) -> NavigationResult:
        """
        Load the listing page.

        Raises:
            AdapterFatalError: If the listing stays unreachable
        """
        target = url or self.site.listing_url
        try:
            return await self.navigate(target, expected_host=self.site.expected_host)
        except NavigationExhausted as e:
            raise AdapterFatalError(self.name, f"listing unreachable: {e}") from e

    async def snapshot(self, page: Optional[Page] = None) -> PageSnapshot:
        return await self.session.snapshot(page or self.page)

    async def fetch_snapshot(self, url: str) -> PageSnapshot:
        """
        Load a URL on a secondary tab and capture it.

        Raises:
            NavigationExhausted: If the page could not be loaded
        """
        page = await self.session.new_page()
        try:
            await self.navigate(url, page=page)
            return await self.session.snapshot(page)
        except PlaywrightError as e:
            raise NavigationExhausted(url, 1, str(e)) from e
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                self.logger.debug("page_close_failed", url=url, error=str(e))

    def discover(self, snapshot: PageSnapshot) -> list[DiscoveredLink]:
        return self.discoverer.discover(snapshot)

    async def discover_recursive(self, snapshot: PageSnapshot) -> list[DiscoveredLink]:
        return await self.discoverer.discover_recursive(snapshot, self.fetch_snapshot)

    async def attach_documents(self, record: CallRecord, links: Iterable[DiscoveredLink]) -> CallRecord:
        """
        Acquire a record's documents and attach the references.

        Args:
            record: Record being built
            links: Candidate links from discovery, in priority order

        Returns:
            The same record, with document_urls and documents filled in
        """
        unique: list[DiscoveredLink] = []
        seen: set[str] = set()
        for link in links:
            key = normalize_url_key(link.url)
            if key not in seen:
                seen.add(key)
                unique.append(link)

        record.document_urls = [link.url for link in unique]
        self.stats.documents_discovered += len(unique)
        if not unique:
            return record

        # Downloads reuse the browser session (login, anti-bot cookies)
        self.http_client.set_cookies(await self.session.cookies())

        report = await self.acquirer.acquire_all(
            unique,
            owner_key=identity_key(record),
            site_id=self.site.site_id,
            record_slug=record.external_number or record.title,
        )
        record.documents = report.documents
        self.stats.documents_acquired += len(report.documents)
        self.stats.documents_failed += len(report.failed)
        self.stats.documents_reused += report.reused
        return record

    def make_record(self, title: str, **fields) -> CallRecord:
        return CallRecord(source_site_id=self.site.site_id, title=title, **fields)

    async def extract_each(
        self,
        entries: list,
        extract: Callable[[Any], Awaitable[Optional[CallRecord]]],
    ) -> list[CallRecord]:
        """
        Run extract() per listing entry, isolating failures.

        A failing entry is logged and counted; the remaining entries still run.
        """
        records = []
        for index, entry in enumerate(entries, 1):
            self.stats.listings_seen += 1
            try:
                record = await extract(entry)
            except AdapterFatalError:
                raise
            except Exception as e:
                self.stats.records_failed += 1
                self.logger.warning(
                    "listing_entry_failed",
                    index=index,
                    total=len(entries),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            if record is not None:
                records.append(record)
        return records

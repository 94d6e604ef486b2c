"""
SIGFAPES adapter (FAPES grant management portal).

The portal requires a login. Open calls sit in an accordion listing; each
call has an information popup (an iframe with the call's files), a detail
page and a "create proposal" area that may list further documents.

Credentials come from the site configuration (SIGFAPES_USERNAME /
SIGFAPES_PASSWORD in sites.yml); the adapter refuses to run without them.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from editais_scraper.core.discovery import (
    DiscoveredLink,
    PageSnapshot,
    extract_onclick_urls,
    resolve_url,
)
from editais_scraper.core.errors import AdapterFatalError, NavigationExhausted, first_line
from editais_scraper.core.models import CallRecord
from editais_scraper.core.normalizer import (
    cleanup_html_text,
    extract_amount,
    normalize_whitespace,
    parse_br_date,
)

from .base import SiteAdapter
from .registry import register_adapter


LOGIN_SELECTORS = [
    'input[name="login"]',
    'input[name="usuario"]',
    'input[name="cpf"]',
    "input#login",
    "input#usuario",
    "input#cpf",
    'input[placeholder*="CPF"]',
    'input[placeholder*="Login"]',
    'input[type="text"]',
]
PASSWORD_SELECTORS = [
    'input[type="password"]',
    'input[name="senha"]',
    'input[name="password"]',
]
SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Entrar")',
    'a:has-text("Entrar")',
]

ACCORDION_SELECTOR = (
    '[data-toggle="collapse"], [data-bs-toggle="collapse"], '
    '.accordion-toggle, .accordion-button.collapsed, [aria-expanded="false"]'
)
ENTRY_SELECTOR = 'a, [onclick], [role="link"], .clickable'
INFO_SELECTOR = 'a[title*="Informação"], a[title*="Information"], a[onclick*="informacao_edital"]'
PROPOSAL_SELECTOR = 'a[onclick*="SubmeterProposta"], a[title*="Criar Proposta"], a[title*="Criar proposta"]'
CLOSE_POPUP_SELECTOR = 'a[title="Close window"], a[title="Fechar"], .ui-dialog-titlebar-close'

LOGIN_ERROR_MARKERS = ["inválid", "incorret"]

NUMBER_PATTERN = re.compile(
    r"(?:edital|nº|n°|no)\s*(?:fapes\s*)?(?:n[o°º]?\s*)?([0-9][0-9/\-]*)",
    re.IGNORECASE,
)
TITLE_AFTER_DASH = re.compile(r"(?:edital|nº|n°).*?[-–•]\s*(.+)", re.IGNORECASE)
NUMBER_SPLIT = re.compile(r"\d{2,}/\d{4}")
CLOSING_PATTERN = re.compile(r"(?:até|prazo|encerra)\s*:?\s*(\d{2}-\d{2}-\d{4})", re.IGNORECASE)
DATE_PATTERN = re.compile(r"\d{2}/\d{2}/\d{4}")

MAX_ENTRY_TEXT = 300
MAX_SUMMARY = 2000


@dataclass
class SigfapesEntry:
    """A call found on the SIGFAPES listing."""
    text: str
    title: str
    number: Optional[str] = None
    closing_date: Optional[date] = None
    url: Optional[str] = None
    info_index: Optional[int] = None


@dataclass
class DetailInfo:
    publication_date: Optional[date] = None
    closing_date: Optional[date] = None
    amount: Optional[str] = None
    summary: Optional[str] = None


def require_credentials(credentials: dict) -> tuple[str, str]:
    """
    Return (username, password) from the site configuration.

    Raises:
        AdapterFatalError: If either value is missing
    """
    username = (credentials or {}).get("username", "").strip()
    password = (credentials or {}).get("password", "")
    if not username or not password:
        raise AdapterFatalError(
            "sigfapes",
            "missing credentials (set SIGFAPES_USERNAME and SIGFAPES_PASSWORD)",
        )
    return username, password


def login_failure(html: str) -> Optional[str]:
    """
    Inspect the page after submitting the login form.

    Returns:
        Reason string when the login was rejected, otherwise None
    """
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True).lower()
    for marker in LOGIN_ERROR_MARKERS:
        if marker in text:
            return "credentials rejected"
    if soup.select_one('input[type="password"]') is not None:
        return "login page persisted after submit"
    return None


def _listing_link_score(text: str, href: str, onclick: str) -> int:
    text = text.lower()
    href = href.lower()
    onclick = onclick.lower()
    if ("edital" in text or "editais" in text) and any(
        word in text for word in ("aberto", "ativo", "disponível", "disponivel")
    ):
        return 3
    if "edital" in text or "chamada" in text:
        return 2
    if any(word in href for word in ("edital", "chamada", "aberto")) or "edital" in onclick:
        return 1
    return 0


def find_listing_link(html: str, base_url: str) -> Optional[str]:
    """
    Locate the open-calls listing among the portal's menu links.

    Anchors mentioning "edital" together with aberto/ativo/disponível rank
    highest; ties keep page order.

    Returns:
        Absolute URL of the best navigable anchor, or None
    """
    soup = BeautifulSoup(html or "", "lxml")
    best_url, best_score = None, 0
    for anchor in soup.select("a"):
        text = normalize_whitespace(anchor.get_text(" ", strip=True))
        href = anchor.get("href") or ""
        onclick = anchor.get("onclick") or ""
        score = _listing_link_score(text, href, onclick)
        if score <= best_score:
            continue
        url = resolve_url(href, base_url)
        if not url:
            candidates = extract_onclick_urls(onclick)
            url = resolve_url(candidates[0], base_url) if candidates else None
        if url:
            best_url, best_score = url, score
    return best_url


def parse_entry_text(text: str) -> tuple[Optional[str], str, Optional[date]]:
    """
    Split a listing line into number, title and closing date.

    "Edital FAPES Nº 12/2025 - Universal (até 30-06-2025)"
    -> ("12/2025", "Universal (até 30-06-2025)", date(2025, 6, 30))
    """
    text = normalize_whitespace(text)

    match = NUMBER_PATTERN.search(text)
    number = match.group(1).strip("-/") if match else None

    title_match = TITLE_AFTER_DASH.search(text)
    if title_match:
        title = title_match.group(1).strip()
    else:
        parts = NUMBER_SPLIT.split(text)
        if len(parts) > 1 and parts[-1].strip():
            title = re.sub(r"^[-–•]\s*", "", parts[-1].strip())
        else:
            title = text[:200]

    closing = None
    closing_match = CLOSING_PATTERN.search(text)
    if closing_match:
        closing = parse_br_date(closing_match.group(1))

    return number or None, title, closing


def _mentions_call(text: str, href: str, onclick: str) -> bool:
    text = text.lower()
    return (
        "edital" in text
        or "chamada" in text
        or "edital" in href.lower()
        or "edital" in onclick.lower()
    )


def parse_listing(html: str, base_url: str) -> list[SigfapesEntry]:
    """
    Extract call entries from the (expanded) listing page.

    Links, onclick rows and [role=link] elements mentioning edital/chamada
    are candidates; when candidates nest, the innermost one wins.

    Args:
        html: Rendered listing HTML
        base_url: URL of the listing page

    Returns:
        Entries in page order, one per distinct text
    """
    soup = BeautifulSoup(html or "", "lxml")
    info_icons = soup.select(INFO_SELECTOR)
    icon_positions = {id(icon): index for index, icon in enumerate(info_icons)}
    excluded = {id(element) for element in info_icons + soup.select(PROPOSAL_SELECTOR)}

    matches = []
    for element in soup.select(ENTRY_SELECTOR):
        if id(element) in excluded:
            continue
        text = normalize_whitespace(element.get_text(" ", strip=True))
        if not text or len(text) > MAX_ENTRY_TEXT:
            continue
        if _mentions_call(text, element.get("href") or "", element.get("onclick") or ""):
            matches.append((element, text))

    ancestors = set()
    for element, _ in matches:
        for parent in element.parents:
            ancestors.add(id(parent))

    entries = []
    seen_texts = set()
    for element, text in matches:
        if id(element) in ancestors or text in seen_texts:
            continue
        seen_texts.add(text)

        url = resolve_url(element.get("href"), base_url)
        if not url:
            for candidate in extract_onclick_urls(element.get("onclick") or ""):
                url = resolve_url(candidate, base_url)
                if url:
                    break

        info_index = None
        container = element.find_parent(["tr", "li"]) or element.parent
        if container is not None:
            icon = container.select_one(INFO_SELECTOR)
            if icon is not None:
                info_index = icon_positions.get(id(icon))

        number, title, closing = parse_entry_text(text)
        if number is None and "editais" in text.lower():
            # Menu entries ("Editais Abertos"), not calls
            continue
        entries.append(
            SigfapesEntry(
                text=text,
                title=title,
                number=number,
                closing_date=closing,
                url=url,
                info_index=info_index,
            )
        )
    return entries


def parse_detail(text: str) -> DetailInfo:
    """
    Extract dates, amount and summary from a detail page's text.

    The first date is the publication date and the last one the closing
    date.
    """
    text = cleanup_html_text(text)
    dates = [parse_br_date(d) for d in DATE_PATTERN.findall(text)]
    dates = [d for d in dates if d is not None]
    return DetailInfo(
        publication_date=dates[0] if dates else None,
        closing_date=dates[-1] if len(dates) > 1 else None,
        amount=extract_amount(text),
        summary=text[:MAX_SUMMARY] or None,
    )


def find_proposal_link(html: str, base_url: str) -> Optional[str]:
    """URL behind the "create proposal" control, when it is a plain link."""
    soup = BeautifulSoup(html or "", "lxml")
    for control in soup.select(PROPOSAL_SELECTOR):
        url = resolve_url(control.get("href"), base_url)
        if url:
            return url
        for candidate in extract_onclick_urls(control.get("onclick") or ""):
            url = resolve_url(candidate, base_url)
            if url:
                return url
    return None


def has_proposal_control(html: str) -> bool:
    return BeautifulSoup(html or "", "lxml").select_one(PROPOSAL_SELECTOR) is not None


def page_text(html: str) -> str:
    return BeautifulSoup(html or "", "lxml").get_text("\n", strip=True)


@register_adapter("sigfapes")
class SigfapesAdapter(SiteAdapter):
    """Open calls from the authenticated SIGFAPES portal."""

    _listing_url = ""

    async def open(self) -> None:
        # Fail before launching a browser when the credentials are missing
        self._credentials = require_credentials(self.site.credentials)
        await super().open()

    async def collect(self) -> list[CallRecord]:
        await self.login(*self._credentials)

        listing_url = find_listing_link(await self.page.content(), self.page.url)
        if listing_url:
            await self.open_listing(listing_url)
        else:
            self.logger.warning("listing_link_not_found", url=self.page.url)

        await self.expand_sections()
        snapshot = await self.snapshot()
        self._listing_url = snapshot.url
        entries = parse_listing(snapshot.html, snapshot.url)
        self.logger.info("listing_parsed", entries=len(entries))
        return await self.extract_each(entries, self._build_record)

    async def login(self, username: str, password: str) -> None:
        """
        Sign in on the portal's landing page.

        Raises:
            AdapterFatalError: If the form is missing or the login is rejected
        """
        await self.open_listing(self.site.listing_url)

        login_field = await self._first_present(LOGIN_SELECTORS)
        password_field = await self._first_present(PASSWORD_SELECTORS)
        if login_field is None or password_field is None:
            raise AdapterFatalError(self.name, "login form not found")

        await login_field.fill(username)
        await password_field.fill(password)

        submit = await self._first_present(SUBMIT_SELECTORS)
        try:
            if submit is not None:
                await submit.click()
            else:
                await password_field.press("Enter")
            await self.page.wait_for_load_state("load", timeout=self.engine.navigation.timeout_ms)
        except PlaywrightError as e:
            raise AdapterFatalError(self.name, f"login submit failed: {e}") from e

        await self.sleep(self.engine.navigation.settle_delay)

        reason = login_failure(await self.page.content())
        if reason:
            raise AdapterFatalError(self.name, reason)
        self.logger.info("login_succeeded", url=self.page.url)

    async def _first_present(self, selectors: list[str]):
        for selector in selectors:
            locator = self.page.locator(selector).first
            if await locator.count():
                return locator
        return None

    async def expand_sections(self) -> int:
        """Open collapsed accordion sections, up to max_accordion_clicks."""
        limit = int(self.site.options.get("max_accordion_clicks", 30))
        toggles = self.page.locator(ACCORDION_SELECTOR)
        total = await toggles.count()

        clicked = 0
        for index in range(min(total, limit)):
            try:
                await toggles.nth(index).click(timeout=5000)
            except PlaywrightError as e:
                self.logger.debug("accordion_click_failed", index=index, error=first_line(e))
                continue
            clicked += 1
            await self.sleep(0.5)

        if total > limit:
            self.logger.warning("accordion_click_limit", limit=limit, sections=total)
        self.logger.info("accordion_expanded", clicked=clicked, sections=total)
        return clicked

    async def _build_record(self, entry: SigfapesEntry) -> CallRecord:
        record = self.make_record(
            entry.title,
            external_number=entry.number,
            closing_date=entry.closing_date,
            issuing_body="FAPES",
            status="Aberto",
            link=entry.url,
        )

        links = await self._popup_links(entry)

        if entry.url:
            try:
                detail = await self.fetch_snapshot(entry.url)
            except NavigationExhausted as e:
                self.logger.warning("detail_page_failed", url=entry.url, error=str(e))
            else:
                info = parse_detail(page_text(detail.html))
                record.publication_date = info.publication_date
                record.closing_date = record.closing_date or info.closing_date
                record.amount = info.amount
                record.summary = info.summary
                links.extend(await self.discover_recursive(detail))
                links.extend(await self._proposal_links(detail))

        return await self.attach_documents(record, links)

    async def _popup_links(self, entry: SigfapesEntry) -> list[DiscoveredLink]:
        """Documents listed in the entry's information popup."""
        if entry.info_index is None:
            return []

        try:
            await self.page.locator(INFO_SELECTOR).nth(entry.info_index).click(timeout=5000)
            await self.page.wait_for_selector("iframe", timeout=10000)
            await self.sleep(self.engine.navigation.settle_delay)
            snapshot = await self.snapshot()
        except PlaywrightError as e:
            self.logger.warning("info_popup_failed", title=entry.title, error=first_line(e))
            return []
        finally:
            await self._close_popup()

        popup = PageSnapshot(url=snapshot.url, html="", frames=snapshot.frames)
        return self.discover(popup)

    async def _close_popup(self) -> None:
        close = self.page.locator(CLOSE_POPUP_SELECTOR)
        try:
            if await close.count():
                await close.first.click(timeout=3000)
        except PlaywrightError as e:
            self.logger.debug("popup_close_failed", error=first_line(e))

    async def _proposal_links(self, detail: PageSnapshot) -> list[DiscoveredLink]:
        """Documents on the "create proposal" page linked from the detail page."""
        url = find_proposal_link(detail.html, detail.url)
        if url:
            try:
                proposal = await self.fetch_snapshot(url)
            except NavigationExhausted as e:
                self.logger.warning("proposal_page_failed", url=url, error=str(e))
                return []
            return await self.discover_recursive(proposal)

        if not has_proposal_control(detail.html):
            return []

        # Script-driven control: click it on a secondary tab
        page = await self.session.new_page()
        try:
            await self.navigate(detail.url, page=page)
            await page.locator(PROPOSAL_SELECTOR).first.click(timeout=5000)
            await page.wait_for_load_state("load", timeout=self.engine.navigation.timeout_ms)
            proposal = await self.session.snapshot(page)
        except (PlaywrightError, NavigationExhausted) as e:
            self.logger.warning("proposal_page_failed", url=detail.url, error=first_line(e))
            return []
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                self.logger.debug("page_close_failed", error=str(e))

        return await self.discover_recursive(proposal)

"""
FAPES adapter (Fundação de Amparo à Pesquisa do Espírito Santo).

The open-calls page is a table: one row per call, with the call's link
and its documents (edital, annexes, rectifications) as anchors in the row.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from editais_scraper.core.discovery import DiscoveredLink, is_document_url, normalize_url_key
from editais_scraper.core.errors import NavigationExhausted
from editais_scraper.core.models import CallRecord
from editais_scraper.core.normalizer import (
    extract_call_number,
    normalize_whitespace,
    parse_br_date,
    title_from_filename,
)

from .base import SiteAdapter
from .registry import register_adapter


# Row anchors pointing at documents or call pages
ROW_LINK_MARKERS = (".pdf", "/media/", "/editais/")
LOOSE_LINK_MARKERS = (".pdf", "/media/")

TRIVIAL_LINK_TEXTS = ("baixar", "download")
INVALID_TITLES = ("baixar", "download", "edital fapes")

DATE_ONLY = re.compile(r"^\d{2}/\d{2}/\d{4}$")
FILE_SIZE = re.compile(r"^\d+(?:[.,]\d+)?\s*(kB|MB|GB)$", re.IGNORECASE)
ROW_DATE = re.compile(r"\d{2}/\d{2}/\d{4}")
DOTTED_NUMBER = re.compile(r"(?<![\d.])(\d{1,4})\.(\d{4})(?!\d)")

GENERIC_TITLE_PREFIX = "edital fapes nº"


@dataclass
class ListingEntry:
    """One call as it appears on the FAPES listing."""
    title: str
    link: str
    number: Optional[str] = None
    summary: Optional[str] = None
    closing_date: Optional[date] = None
    document_urls: list[str] = field(default_factory=list)


@dataclass
class _RowLink:
    url: str
    text: str


def _row_links(row: Tag, base_url: str, seen: set[str], markers=ROW_LINK_MARKERS) -> list[_RowLink]:
    links = []
    for anchor in row.select("a[href]"):
        href = anchor.get("href", "").strip()
        if not any(marker in href.lower() for marker in markers):
            continue
        url = urljoin(base_url, href)
        key = normalize_url_key(url)
        if key in seen:
            continue
        seen.add(key)
        links.append(_RowLink(url=url, text=normalize_whitespace(anchor.get_text(" ", strip=True))))
    return links


def pick_principal_link(links: list[_RowLink]) -> _RowLink:
    """
    Choose the link that names the call.

    Prefers a descriptive text mentioning edital/nº/numero, then any
    non-trivial text, then the first link.
    """
    for link in links:
        text = link.text.lower()
        if (
            len(text) > 10
            and not any(word in text for word in TRIVIAL_LINK_TEXTS)
            and ("edital" in text or "nº" in text or "numero" in text)
        ):
            return link
    for link in links:
        text = link.text.lower()
        if len(text) > 5 and text not in TRIVIAL_LINK_TEXTS:
            return link
    return links[0]


def number_from_link(text: str, href: str) -> Optional[str]:
    """Call number from link text, or from a dotted number in the href ("12.2025")."""
    number = extract_call_number(text)
    if number:
        return number
    match = DOTTED_NUMBER.search(href)
    if match:
        return f"{match.group(1)}/{match.group(2)}"
    return None


def _is_plausible_cell_text(text: str) -> bool:
    lowered = text.lower()
    return (
        10 < len(text) < 200
        and not any(word in lowered for word in ("baixar", "download", "pdf"))
        and not DATE_ONLY.match(text)
        and not FILE_SIZE.match(text)
    )


def _title_from_cells(cells: list[Tag]) -> str:
    """Longest plausible title text across the row's cells."""
    title = ""
    for cell in cells:
        anchors = cell.select("a")
        if anchors:
            candidates = [normalize_whitespace(a.get_text(" ", strip=True)) for a in anchors]
        else:
            candidates = [normalize_whitespace(cell.get_text(" ", strip=True))]
        for text in candidates:
            if _is_plausible_cell_text(text) and len(text) > len(title):
                title = text
    return title


def _summary_from_cells(cells: list[Tag], title: str) -> Optional[str]:
    summary = ""
    for cell in cells:
        text = normalize_whitespace(cell.get_text(" ", strip=True))
        lowered = text.lower()
        if not 30 < len(text) < 500 or text == title:
            continue
        if "pdf" in lowered or "baixar" in lowered or "download" in lowered:
            continue
        if DATE_ONLY.match(text) or FILE_SIZE.match(text):
            continue
        if len(text) > len(summary):
            summary = text
    return summary or None


def is_invalid_title(title: str, number: Optional[str]) -> bool:
    lowered = title.lower().strip()
    return (
        len(lowered) < 5
        or lowered in INVALID_TITLES
        or (lowered.startswith(GENERIC_TITLE_PREFIX) and not number)
    )


def _is_weak_title(title: str) -> bool:
    return len(title) < 5 or title.lower() in TRIVIAL_LINK_TEXTS


def parse_row(row: Tag, base_url: str, seen: set[str]) -> Optional[ListingEntry]:
    """
    Parse one table row into a listing entry.

    Returns:
        ListingEntry, or None when the row is not a call
    """
    cells = row.find_all("td")
    if len(cells) < 2:
        return None

    links = _row_links(row, base_url, seen)
    if not links:
        return None

    principal = pick_principal_link(links)
    number = number_from_link(principal.text, principal.url)

    title = ""
    if len(principal.text) > 10 and principal.text.lower() != "baixar":
        title = principal.text
    if len(title) < 5:
        title = _title_from_cells(cells)
    if _is_weak_title(title):
        title = title_from_filename(principal.url) or title
    if _is_weak_title(title) and number:
        title = f"Edital FAPES Nº {number}"

    if is_invalid_title(title, number):
        return None

    dates = ROW_DATE.findall(row.get_text(" ", strip=True))
    closing = parse_br_date(dates[-1]) if dates else None

    return ListingEntry(
        title=title,
        link=principal.url,
        number=number,
        summary=_summary_from_cells(cells, title),
        closing_date=closing,
        document_urls=[link.url for link in links],
    )


def parse_loose_links(soup: BeautifulSoup, base_url: str) -> list[ListingEntry]:
    """Fallback for pages without a calls table: one entry per document anchor."""
    entries = []
    seen: set[str] = set()
    for link in _row_links(soup, base_url, seen, markers=LOOSE_LINK_MARKERS):
        if link.text.lower() in TRIVIAL_LINK_TEXTS:
            continue
        number = number_from_link(link.text, link.url)
        title = link.text
        if _is_weak_title(title):
            title = title_from_filename(link.url) or ""
        if _is_weak_title(title) and number:
            title = f"Edital FAPES Nº {number}"
        if is_invalid_title(title, number):
            continue
        entries.append(ListingEntry(title=title, link=link.url, number=number, document_urls=[link.url]))
    return entries


def parse_listing(html: str, base_url: str) -> list[ListingEntry]:
    """
    Parse the FAPES open-calls page.

    Args:
        html: Rendered listing HTML
        base_url: URL of the listing page

    Returns:
        Listing entries in page order
    """
    soup = BeautifulSoup(html or "", "lxml")
    entries = []
    seen: set[str] = set()
    for table in soup.find_all("table"):
        for row in table.find_all("tr"):
            entry = parse_row(row, base_url, seen)
            if entry:
                entries.append(entry)

    if not entries:
        entries = parse_loose_links(soup, base_url)
    return entries


@register_adapter("fapes")
class FapesAdapter(SiteAdapter):
    """Open calls from fapes.es.gov.br/Editais/Abertos."""

    async def collect(self) -> list[CallRecord]:
        await self.open_listing()
        snapshot = await self.snapshot()
        entries = parse_listing(snapshot.html, snapshot.url)
        self.logger.info("listing_parsed", entries=len(entries))
        return await self.extract_each(entries, self._build_record)

    async def _build_record(self, entry: ListingEntry) -> CallRecord:
        record = self.make_record(
            entry.title,
            external_number=entry.number,
            summary=entry.summary,
            closing_date=entry.closing_date,
            issuing_body="FAPES",
            status="Aberto",
            link=entry.link,
        )

        detail_page = None if is_document_url(entry.link) else entry.link
        links = [
            DiscoveredLink(url=url, text=entry.title, source_url=self.site.listing_url)
            for url in entry.document_urls
            if url != detail_page
        ]
        if detail_page:
            try:
                detail = await self.fetch_snapshot(detail_page)
            except NavigationExhausted as e:
                self.logger.warning("detail_page_failed", url=entry.link, error=str(e))
            else:
                links.extend(await self.discover_recursive(detail))

        return await self.attach_documents(record, links)

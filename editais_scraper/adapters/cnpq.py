"""
CNPq adapter (Conselho Nacional de Desenvolvimento Científico e Tecnológico).

The public-calls page renders one ".content" card per call: a heading with
the call number, a description, the "Inscrições" period and a set of
links. Many documents live behind result landing pages (resultado.cnpq.br
in sites.yml), which discovery follows as intermediate hosts.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from bs4 import BeautifulSoup, Tag

from editais_scraper.core.discovery import (
    DiscoveredLink,
    PageSnapshot,
    is_document_url,
    normalize_url_key,
    resolve_url,
)
from editais_scraper.core.errors import NavigationExhausted
from editais_scraper.core.models import CallRecord
from editais_scraper.core.normalizer import normalize_title_key, normalize_whitespace, parse_br_date

from .base import SiteAdapter
from .registry import register_adapter


HEADING_SELECTOR = "h1, h2, h3, h4, h5, h6, .title, [class*=title]"
CONTROL_SELECTOR = "a, button, .btn, [role=button]"

HEADING_NUMBER = re.compile(r"N[º°]?\s*\d+/\d+", re.IGNORECASE)
HEADING_WORD = re.compile(r"\bchamada\b", re.IGNORECASE)
NUMBER_PATTERN = re.compile(r"N[º°]?\s*(\d+/\d+)", re.IGNORECASE)
FALLBACK_NUMBER = re.compile(r"(\d+/\d{4})")
REGISTRATION_BLOCK = re.compile(r"[Ii]nscri[çc][õo]es[:\s]+(.*?)(?:\n\n|\n[A-Z]|$)", re.DOTALL)
DATE_PATTERN = re.compile(r"\d{2}/\d{2}/\d{4}")

MIN_DESCRIPTION_LINE = 20
MAX_DESCRIPTION_LINES = 10
MIN_DESCRIPTION = 50
MAX_DESCRIPTION = 1500


@dataclass
class CallCard:
    """One call card from the listing."""
    title: str
    html: str
    number: Optional[str] = None
    summary: Optional[str] = None
    publication_date: Optional[date] = None
    closing_date: Optional[date] = None
    link: Optional[str] = None
    document_links: int = 0


def is_call_heading(text: str) -> bool:
    return bool(HEADING_NUMBER.search(text) or HEADING_WORD.search(text))


def extract_number(heading: str) -> Optional[str]:
    match = NUMBER_PATTERN.search(heading) or FALLBACK_NUMBER.search(heading)
    return match.group(1) if match else None


def extract_description(card_text: str, heading: str) -> Optional[str]:
    """
    Description from the card body: the first long lines after the heading.

    Args:
        card_text: Card text with line breaks between elements
        heading: Heading text to remove

    Returns:
        Description (truncated) or None when too short
    """
    body = card_text.replace(heading, "", 1)
    lines = [line.strip() for line in body.split("\n")]
    lines = [line for line in lines if len(line) > MIN_DESCRIPTION_LINE][:MAX_DESCRIPTION_LINES]
    text = normalize_whitespace(" ".join(lines))
    if len(text) > MIN_DESCRIPTION:
        return text[:MAX_DESCRIPTION]
    return None


def extract_dates(card_text: str) -> tuple[Optional[date], Optional[date]]:
    """
    Publication and closing dates from the "Inscrições" block.

    Falls back to every date in the card. The first date is the publication
    date and the last one the closing date.
    """
    block = REGISTRATION_BLOCK.search(card_text)
    found = DATE_PATTERN.findall(block.group(1)) if block else []
    if not found:
        found = DATE_PATTERN.findall(card_text)

    unique = list(dict.fromkeys(found))
    if not unique:
        return None, None
    return parse_br_date(unique[0]), parse_br_date(unique[-1])


def find_call_link(card: Tag, base_url: str) -> Optional[str]:
    """The "Chamada" control's target, or else the first link of the card."""
    for control in card.select(CONTROL_SELECTOR):
        text = normalize_whitespace(control.get_text(" ", strip=True)).lower()
        if text == "chamada" or ("chamada" in text and len(text) < 30 and "chamadas" not in text):
            href = control.get("href") or control.get("data-href")
            if not href:
                inner = control.select_one("a[href]")
                href = inner.get("href") if inner else None
            url = resolve_url(href, base_url)
            if url:
                return url

    for anchor in card.select("a[href]"):
        url = resolve_url(anchor.get("href"), base_url)
        if url:
            return url
    return None


def count_document_links(
    card: Tag,
    base_url: str,
    is_intermediate: Optional[Callable[[str], bool]] = None,
) -> int:
    """Document links in a card; links to intermediate result pages count too."""
    count = 0
    for anchor in card.select("a[href]"):
        url = resolve_url(anchor.get("href"), base_url)
        if url and (is_document_url(url) or (is_intermediate is not None and is_intermediate(url))):
            count += 1
    return count


def parse_cards(
    html: str,
    base_url: str,
    is_intermediate: Optional[Callable[[str], bool]] = None,
) -> list[CallCard]:
    """
    Parse the call cards of the CNPq listing.

    Args:
        html: Rendered listing HTML
        base_url: URL of the listing page
        is_intermediate: Matches links to intermediate result pages

    Returns:
        Cards in page order, repeated headings skipped
    """
    soup = BeautifulSoup(html or "", "lxml")
    cards = []
    seen_headings: set[str] = set()

    for element in soup.select(".content"):
        heading_element = element.select_one(HEADING_SELECTOR)
        if heading_element is None:
            continue
        heading = normalize_whitespace(heading_element.get_text(" ", strip=True))
        if not heading or not is_call_heading(heading) or heading in seen_headings:
            continue
        seen_headings.add(heading)

        text = element.get_text("\n", strip=True)
        publication, closing = extract_dates(text)
        cards.append(
            CallCard(
                title=heading,
                html=str(element),
                number=extract_number(heading),
                summary=extract_description(text, heading),
                publication_date=publication,
                closing_date=closing,
                link=find_call_link(element, base_url),
                document_links=count_document_links(element, base_url, is_intermediate),
            )
        )
    return cards


def dedupe_entries(cards: list[CallCard]) -> list[CallCard]:
    """
    Collapse cards describing the same call.

    Cards match by number, or by normalized title when there is no number;
    the card with more document links wins and keeps the first position.
    """
    positions: dict[str, int] = {}
    result: list[CallCard] = []
    for card in cards:
        key = card.number or f"title:{normalize_title_key(card.title)}"
        if key not in positions:
            positions[key] = len(result)
            result.append(card)
        elif card.document_links > result[positions[key]].document_links:
            result[positions[key]] = card
    return result


@register_adapter("cnpq")
class CnpqAdapter(SiteAdapter):
    """Public calls from memoria2.cnpq.br."""

    _listing_url = ""

    async def collect(self) -> list[CallRecord]:
        await self.open_listing()
        snapshot = await self.snapshot()
        cards = dedupe_entries(parse_cards(snapshot.html, snapshot.url, self.discoverer.is_intermediate))
        self.logger.info("listing_parsed", entries=len(cards))
        self._listing_url = snapshot.url
        return await self.extract_each(cards, self._build_record)

    async def _build_record(self, card: CallCard) -> CallRecord:
        record = self.make_record(
            card.title,
            external_number=card.number,
            summary=card.summary,
            publication_date=card.publication_date,
            closing_date=card.closing_date,
            issuing_body="CNPq",
            status="Aberta",
            link=card.link,
        )

        fragment = PageSnapshot(url=self._listing_url, html=card.html)
        links = await self.discover_recursive(fragment)
        found = {normalize_url_key(link.url) for link in links}

        if (
            card.link
            and normalize_url_key(card.link) not in found
            and not self.discoverer.is_denied(card.link)
            and not self.discoverer.is_intermediate(card.link)
        ):
            links.extend(await self._links_from_call_page(card))

        return await self.attach_documents(record, links)

    async def _links_from_call_page(self, card: CallCard) -> list[DiscoveredLink]:
        """Links behind the card's "Chamada" control."""
        direct = DiscoveredLink(url=card.link, text=card.title, heuristic="control", source_url=self._listing_url)
        if is_document_url(card.link):
            return [direct]

        try:
            detail = await self.fetch_snapshot(card.link)
        except NavigationExhausted as e:
            # Extensionless downloads do not render as pages; let acquisition decide
            self.logger.warning("detail_page_failed", url=card.link, error=str(e))
            return [direct]
        return await self.discover_recursive(detail)

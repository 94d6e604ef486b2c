"""
Document link discovery over rendered pages.

Heuristics run in priority order and their results are unioned:
1. anchors with document-like URLs or text
2. interactive controls (buttons, onclick handlers, data-* attributes)
3. anchors inside table cells / list items with document vocabulary
4. same-origin nested frames (heuristics 1-3 again) and embedded documents

Links pointing at configured "intermediate" hosts (landing pages that list
the real documents, e.g. resultado.cnpq.br) are not reported; they are
followed by discover_recursive() up to a fixed depth.
"""

import re
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional
from urllib.parse import urljoin, urlparse, urlunparse

import structlog
from bs4 import BeautifulSoup, Tag

from .errors import ScraperError
from .normalizer import normalize_whitespace

logger = structlog.get_logger(__name__)


# File extensions for downloadable documents
DOCUMENT_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".odt", ".rtf",
    ".xls", ".xlsx", ".ods", ".ppt", ".pptx",
    ".zip", ".rar", ".7z",
)

# Path segments used by the document servers of the crawled portals
DOCUMENT_PATH_SEGMENTS = [
    "/documents/",
    "/media/",
    "/editais/",
    "/arquivos/",
    "/anexos/",
    "/download",
]

# Anchor text that is document-indicative on its own
STRONG_TEXT_KEYWORDS = ["pdf", "baixar", "download"]

# Control text that makes a button's target a document candidate
CONTROL_TEXT_KEYWORDS = ["edital", "chamada", "anexo", "baixar", "download", "pdf", "documento"]

# Enclosing text (table cell / list item) that makes links inside it candidates
CONTEXT_KEYWORDS = [
    "edital",
    "anexo",
    "chamada",
    "formulário",
    "formulario",
    "resultado",
    "retificação",
    "retificacao",
    "errata",
    "termo de referência",
    "termo de referencia",
    "regulamento",
]

SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "whatsapp:")

CONTROL_SELECTOR = (
    "button, [role=button], .btn, input[type=button], input[type=submit], "
    "[onclick], [data-href], [data-url], [data-pdf], [data-document], [data-link]"
)
DATA_ATTRIBUTES = ["data-href", "data-url", "data-pdf", "data-document", "data-link"]

ONCLICK_URL_PATTERNS = [
    re.compile(r"(?:window\.open|location\.assign|location\.replace)\s*\(\s*['\"]([^'\"]+)['\"]"),
    re.compile(r"location(?:\.href)?\s*=\s*['\"]([^'\"]+)['\"]"),
    re.compile(r"['\"]((?:https?://|/)[^'\"\s]+)['\"]"),
]

# Enclosing elements longer than this are layout containers, not entries
MAX_CONTEXT_TEXT = 500


@dataclass
class DiscoveryConfig:
    """Site-specific discovery data."""
    intermediate_hosts: list[str] = field(default_factory=list)
    url_denylist: list[str] = field(default_factory=list)
    text_denylist: list[str] = field(default_factory=list)
    max_depth: int = 2

    def merged(self, other: Optional[dict]) -> "DiscoveryConfig":
        """Return a copy extended with per-site additions from YAML."""
        other = other or {}
        return DiscoveryConfig(
            intermediate_hosts=_unique(self.intermediate_hosts + list(other.get("intermediate_hosts", []))),
            url_denylist=_unique(self.url_denylist + list(other.get("url_denylist", []))),
            text_denylist=_unique(self.text_denylist + list(other.get("text_denylist", []))),
            max_depth=int(other.get("max_depth", self.max_depth)),
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DiscoveryConfig":
        data = data or {}
        return cls(
            intermediate_hosts=list(data.get("intermediate_hosts", [])),
            url_denylist=list(data.get("url_denylist", [])),
            text_denylist=list(data.get("text_denylist", [])),
            max_depth=int(data.get("max_depth", 2)),
        )


@dataclass
class PageSnapshot:
    """Rendered HTML of a page plus its nested frames."""
    url: str
    html: str
    frames: list["PageSnapshot"] = field(default_factory=list)


@dataclass
class DiscoveredLink:
    """A candidate document link."""
    url: str
    text: str = ""
    heuristic: str = "anchor"  # anchor, control, context, frame, embed
    depth: int = 0
    source_url: str = ""


FetchPage = Callable[[str], Awaitable[PageSnapshot]]


def _unique(items: Iterable[str]) -> list[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def normalize_url_key(url: str) -> str:
    """
    Deduplication key for a URL: scheme + host + path, lowercased.

    Fragment and query are ignored, so "a.pdf?download=1" and "a.pdf#page=2"
    are the same document.
    """
    parsed = urlparse(url.strip())
    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return f"{parsed.scheme}://{parsed.netloc}{path}".lower()


def clean_url(url: str) -> str:
    """Drop the fragment; keep the query."""
    parsed = urlparse(url.strip())
    return urlunparse(parsed._replace(fragment=""))


def resolve_url(href: Optional[str], base_url: str) -> Optional[str]:
    """
    Resolve an href against its page URL.

    Args:
        href: Raw attribute value
        base_url: URL of the page containing it

    Returns:
        Absolute http(s) URL without fragment, or None for skipped links
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#") or href.lower().startswith(SKIPPED_SCHEMES):
        return None

    absolute = urljoin(base_url, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return clean_url(absolute)


def same_origin(url: str, other: str) -> bool:
    """True when both URLs share scheme, host and port."""
    a, b = urlparse(url), urlparse(other)
    return (a.scheme, a.netloc.lower()) == (b.scheme, b.netloc.lower())


def has_document_extension(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(DOCUMENT_EXTENSIONS)


def is_document_url(url: str) -> bool:
    """
    True when the URL itself looks like a document.

    A known document-server path segment only counts when the path goes on
    to something file-like (a numeric id or an extension), so listing pages
    such as /Editais/Abertos are not mistaken for documents.
    """
    if has_document_extension(url):
        return True

    path = urlparse(url).path.lower()
    for segment in DOCUMENT_PATH_SEGMENTS:
        index = path.find(segment)
        if index == -1:
            continue
        rest = path[index + len(segment):]
        if segment == "/download" or re.search(r"\d", rest):
            return True
    return False


def has_vocabulary(text: str, keywords: Iterable[str]) -> bool:
    text = (text or "").lower()
    return any(keyword in text for keyword in keywords)


def extract_onclick_urls(script: str) -> list[str]:
    """
    Pull URL-like strings out of an inline event handler.

    Args:
        script: onclick attribute value

    Returns:
        Candidate URLs (relative or absolute) in order of appearance
    """
    if not script:
        return []
    found = []
    for pattern in ONCLICK_URL_PATTERNS:
        for match in pattern.finditer(script):
            value = match.group(1)
            if value not in found:
                found.append(value)
    return found


def _element_text(element: Tag) -> str:
    text = element.get_text(" ", strip=True)
    if not text:
        text = element.get("title") or element.get("aria-label") or element.get("value") or ""
    return normalize_whitespace(text)


class _LinkCollector:
    """Accumulates document links and intermediate pages for one scan."""

    def __init__(self, discoverer: "LinkDiscoverer", page_url: str, depth: int):
        self.discoverer = discoverer
        self.page_key = normalize_url_key(page_url)
        self.page_url = page_url
        self.depth = depth
        self.links: list[DiscoveredLink] = []
        self.intermediate: list[str] = []
        self._seen: set[str] = set()

    def add(self, url: Optional[str], text: str, heuristic: str, context: str = "") -> bool:
        if not url:
            return False
        key = normalize_url_key(url)
        if key == self.page_key or key in self._seen:
            return False
        if self.discoverer.is_denied(url, text, context):
            self._seen.add(key)
            return False

        if not has_document_extension(url) and self.discoverer.is_intermediate(url):
            self._seen.add(key)
            self.intermediate.append(url)
            return True

        self._seen.add(key)
        self.links.append(
            DiscoveredLink(
                url=url,
                text=text[:200],
                heuristic=heuristic,
                depth=self.depth,
                source_url=self.page_url,
            )
        )
        return True

    def is_seen(self, url: str) -> bool:
        return normalize_url_key(url) in self._seen


class LinkDiscoverer:
    """
    Finds candidate document links on rendered pages.

    Usage:
        discoverer = LinkDiscoverer(DiscoveryConfig(intermediate_hosts=["resultado.cnpq.br"]))
        links = await discoverer.discover_recursive(snapshot, fetch_page)
    """

    def __init__(self, config: Optional[DiscoveryConfig] = None):
        self.config = config or DiscoveryConfig()
        self._url_denylist = [p.lower() for p in self.config.url_denylist]
        self._text_denylist = [p.lower() for p in self.config.text_denylist]
        self._intermediate = [p.lower() for p in self.config.intermediate_hosts]

    def is_denied(self, url: str, text: str = "", context: str = "") -> bool:
        """True for generic/navigational links excluded regardless of matches."""
        url_lower = url.lower()
        if any(pattern in url_lower for pattern in self._url_denylist):
            return True
        text_lower = f"{text} {context}".lower()
        return any(pattern in text_lower for pattern in self._text_denylist)

    def is_intermediate(self, url: str) -> bool:
        """True when the URL's host matches an intermediate-results pattern."""
        host = (urlparse(url).hostname or "").lower()
        return any(pattern in host for pattern in self._intermediate)

    def discover(self, snapshot: PageSnapshot, depth: int = 0) -> list[DiscoveredLink]:
        """
        Discover document links on a single page (no recursion).

        Args:
            snapshot: Rendered page and frames
            depth: Depth tag for the results

        Returns:
            Deduplicated links in heuristic priority order
        """
        collector = self._scan(snapshot, depth)
        return collector.links

    async def discover_recursive(
        self,
        snapshot: PageSnapshot,
        fetch_page: FetchPage,
        max_depth: Optional[int] = None,
    ) -> list[DiscoveredLink]:
        """
        Discover links, following intermediate pages breadth-first.

        Args:
            snapshot: Starting page
            fetch_page: Loads a URL and returns its snapshot
            max_depth: Maximum depth of followed pages (default from config)

        Returns:
            Deduplicated links tagged with the depth they were found at
        """
        limit = self.config.max_depth if max_depth is None else max_depth
        visited = {normalize_url_key(snapshot.url)}
        seen_links: set[str] = set()
        results: list[DiscoveredLink] = []

        queue: deque[tuple[PageSnapshot, int]] = deque([(snapshot, 0)])
        while queue:
            page, depth = queue.popleft()
            collector = self._scan(page, depth)

            for link in collector.links:
                key = normalize_url_key(link.url)
                if key in seen_links:
                    continue
                seen_links.add(key)
                results.append(link)

            for url in collector.intermediate:
                key = normalize_url_key(url)
                if key in visited:
                    continue
                if depth + 1 > limit:
                    logger.debug("intermediate_depth_limit", url=url, depth=depth + 1)
                    continue
                visited.add(key)

                logger.info("following_intermediate", url=url, depth=depth + 1)
                try:
                    child = await fetch_page(url)
                except ScraperError as e:
                    logger.warning("intermediate_fetch_failed", url=url, error=str(e))
                    continue
                visited.add(normalize_url_key(child.url))
                queue.append((child, depth + 1))

        logger.debug(
            "discovery_complete",
            url=snapshot.url,
            links=len(results),
            pages=len(visited),
        )
        return results

    def _scan(self, snapshot: PageSnapshot, depth: int) -> _LinkCollector:
        collector = _LinkCollector(self, snapshot.url, depth)
        self._scan_into(collector, snapshot, snapshot.url, in_frame=False)
        return collector

    def _scan_into(
        self,
        collector: _LinkCollector,
        snapshot: PageSnapshot,
        base_url: str,
        in_frame: bool,
    ) -> None:
        soup = BeautifulSoup(snapshot.html or "", "lxml")
        label = "frame" if in_frame else None

        self._scan_anchors(collector, soup, base_url, label or "anchor")
        self._scan_controls(collector, soup, base_url, label or "control")
        self._scan_context(collector, soup, base_url, label or "context")
        self._scan_embeds(collector, soup, base_url)

        for frame in snapshot.frames:
            frame_url = frame.url or ""
            if frame_url.startswith("about:"):
                frame_base = base_url
            elif same_origin(frame_url, snapshot.url):
                frame_base = frame_url
            else:
                logger.debug("cross_origin_frame_skipped", frame=frame_url, page=snapshot.url)
                continue
            self._scan_into(collector, frame, frame_base, in_frame=True)

    def _scan_anchors(self, collector: _LinkCollector, soup: BeautifulSoup, base_url: str, label: str) -> None:
        """Heuristic 1: anchors with document-like URL or text."""
        for anchor in soup.select("a[href]"):
            url = resolve_url(anchor.get("href"), base_url)
            if not url:
                continue
            text = _element_text(anchor)
            if is_document_url(url) or has_vocabulary(text, STRONG_TEXT_KEYWORDS) or self.is_intermediate(url):
                collector.add(url, text, label, context=_parent_text(anchor))

    def _scan_controls(self, collector: _LinkCollector, soup: BeautifulSoup, base_url: str, label: str) -> None:
        """Heuristic 2: buttons and elements carrying handlers or data-* URLs."""
        for control in soup.select(CONTROL_SELECTOR):
            text = _element_text(control)
            candidates = []
            for attribute in DATA_ATTRIBUTES:
                if control.get(attribute):
                    candidates.append(control.get(attribute))
            candidates.extend(extract_onclick_urls(control.get("onclick", "")))
            if control.name == "a" and control.get("href"):
                candidates.append(control.get("href"))
            for link in control.select("a[href]"):
                candidates.append(link.get("href"))

            text_is_document = has_vocabulary(text, CONTROL_TEXT_KEYWORDS)
            for candidate in candidates:
                url = resolve_url(candidate, base_url)
                if not url:
                    continue
                if text_is_document or is_document_url(url) or self.is_intermediate(url):
                    collector.add(url, text, label, context=_parent_text(control))

    def _scan_context(self, collector: _LinkCollector, soup: BeautifulSoup, base_url: str, label: str) -> None:
        """Heuristic 3: anchors whose table cell or list item is document-indicative."""
        for container in soup.select("td, li"):
            context = normalize_whitespace(container.get_text(" ", strip=True))
            if not context or len(context) > MAX_CONTEXT_TEXT:
                continue
            if not has_vocabulary(context, CONTEXT_KEYWORDS):
                continue
            for anchor in container.select("a[href]"):
                url = resolve_url(anchor.get("href"), base_url)
                if not url or collector.is_seen(url):
                    continue
                if urlparse(url).path in ("", "/"):
                    continue
                collector.add(url, _element_text(anchor) or context[:120], label, context=context)

    def _scan_embeds(self, collector: _LinkCollector, soup: BeautifulSoup, base_url: str) -> None:
        """Embedded documents: iframe/embed/object pointing at a document."""
        for element in soup.select("iframe[src], embed[src], object[data]"):
            raw = element.get("src") or element.get("data")
            url = resolve_url(raw, base_url)
            if url and is_document_url(url):
                collector.add(url, _element_text(element), "embed")


def _parent_text(element: Tag) -> str:
    parent = element.parent
    if parent is None:
        return ""
    text = normalize_whitespace(parent.get_text(" ", strip=True))
    return text[:MAX_CONTEXT_TEXT]

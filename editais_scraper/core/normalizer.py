"""
Normalization utilities for Brazilian call data.

Handles:
- Brazilian date formats (10/03/2025, 10-03-2025, 10 de março de 2025)
- Call numbers (Edital FAPES Nº 12/2025, Chamada CNPq 05/2024)
- Monetary amounts (R$ 150.000,00)
- Text cleanup, diacritic folding and filename-safe slugs
"""

import re
import unicodedata
from datetime import date
from typing import Optional
from urllib.parse import unquote, urlparse

import structlog
from dateutil import parser as date_parser

logger = structlog.get_logger(__name__)


# Portuguese month names for text-based date parsing
PORTUGUESE_MONTHS = {
    "janeiro": 1, "fevereiro": 2, "março": 3, "marco": 3, "abril": 4,
    "maio": 5, "junho": 6, "julho": 7, "agosto": 8, "setembro": 9,
    "outubro": 10, "novembro": 11, "dezembro": 12,
}

NUMERIC_DATE_PATTERN = re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b")
TEXT_DATE_PATTERN = re.compile(r"\b(\d{1,2})\s+de\s+([a-zç]+)\s+de\s+(\d{4})\b", re.IGNORECASE)
ISO_DATE_PATTERN = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")

CALL_NUMBER_PATTERNS = [
    re.compile(r"\bN[º°o]\.?\s*(\d{1,4}\s*/\s*\d{2,4})", re.IGNORECASE),
    re.compile(r"\bN\.?\s+(\d{1,4}\s*/\s*\d{4})", re.IGNORECASE),
    re.compile(r"(?:edital|chamada)(?:\s+p[úu]blica)?(?:\s+[A-Z]{2,}(?:/[A-Z]{2,})?)?\s+(\d{1,4}/\d{4})", re.IGNORECASE),
    re.compile(r"(?<![\d/])(\d{1,4}/\d{4})(?![\d/])"),
]

AMOUNT_PATTERN = re.compile(r"R\$\s*([0-9]{1,3}(?:\.[0-9]{3})*(?:,[0-9]{2})?)")


def parse_br_date(text: str) -> Optional[date]:
    """
    Parse a Brazilian date into a date object.

    Supported formats:
    - "10/03/2025" and "10-03-2025" (day first)
    - "10 de março de 2025"
    - "2025-03-10" (ISO, via dateutil)

    Args:
        text: String containing a date

    Returns:
        date object or None if parsing fails
    """
    if not text:
        return None

    text = text.strip()

    match = NUMERIC_DATE_PATTERN.search(text)
    if match:
        day, month, year = match.groups()
        try:
            return date(int(year), int(month), int(day))
        except ValueError as e:
            logger.warning("invalid_date", text=text, error=str(e))
            return None

    match = TEXT_DATE_PATTERN.search(text)
    if match:
        day, month_name, year = match.groups()
        month = PORTUGUESE_MONTHS.get(month_name.lower())
        if month:
            try:
                return date(int(year), month, int(day))
            except ValueError as e:
                logger.warning("invalid_date", text=text, error=str(e))
                return None

    match = ISO_DATE_PATTERN.search(text)
    if match:
        try:
            return date_parser.isoparse(match.group(0)).date()
        except ValueError as e:
            logger.warning("invalid_date", text=text, error=str(e))

    return None


def extract_all_dates(text: str) -> list[date]:
    """
    Extract all distinct dates from text in order of appearance.

    Args:
        text: Text to search

    Returns:
        List of dates without duplicates
    """
    if not text:
        return []

    found: list[date] = []
    for match in NUMERIC_DATE_PATTERN.finditer(text):
        parsed = parse_br_date(match.group(0))
        if parsed and parsed not in found:
            found.append(parsed)
    for match in TEXT_DATE_PATTERN.finditer(text):
        parsed = parse_br_date(match.group(0))
        if parsed and parsed not in found:
            found.append(parsed)
    return found


def extract_call_number(text: str) -> Optional[str]:
    """
    Extract a call number such as "12/2025" from a heading or link text.

    Dates are never mistaken for numbers: the bare fallback pattern refuses
    digits glued to another slash.

    Args:
        text: Heading, link text or URL

    Returns:
        Number with spaces removed, or None
    """
    if not text:
        return None

    for pattern in CALL_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"\s+", "", match.group(1))
    return None


def extract_amount(text: str) -> Optional[str]:
    """Return the first "R$ ..." amount in text, normalized to "R$ 1.000,00"."""
    if not text:
        return None
    match = AMOUNT_PATTERN.search(text)
    return f"R$ {match.group(1)}" if match else None


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace (including NBSP) and strip."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.replace("\u00a0", " ")).strip()


def cleanup_html_text(text: str) -> str:
    """
    Clean up text extracted from HTML.

    - Removes leftover entities
    - Normalizes whitespace while keeping paragraph breaks

    Args:
        text: Raw text from HTML

    Returns:
        Cleaned text
    """
    if not text:
        return ""

    cleaned = text.replace("&nbsp;", " ").replace("&amp;", "&")
    cleaned = cleaned.replace("\u00a0", " ")
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = re.sub(r"\n\s*\n+", "\n\n", cleaned)
    return cleaned.strip()


def strip_diacritics(text: str) -> str:
    """Fold accented characters to their ASCII base ("edição" -> "edicao")."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_title_key(title: str, max_length: int = 120) -> str:
    """
    Normalize a title for identity comparison.

    Lowercases, strips diacritics, replaces punctuation with spaces,
    collapses whitespace and truncates.

    Args:
        title: Raw title
        max_length: Maximum length of the result

    Returns:
        Normalized key fragment
    """
    if not title:
        return ""
    folded = strip_diacritics(title.lower())
    folded = re.sub(r"[^\w\s]|_", " ", folded)
    folded = re.sub(r"\s+", " ", folded).strip()
    return folded[:max_length].rstrip()


def slugify(text: str, max_length: int = 60, fallback: str = "item") -> str:
    """
    Make a filesystem-safe ASCII slug.

    Args:
        text: Arbitrary text (title, number, filename stem)
        max_length: Maximum slug length
        fallback: Returned when nothing usable remains

    Returns:
        Slug of [A-Za-z0-9_-] characters
    """
    ascii_text = strip_diacritics(text or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^A-Za-z0-9\-]+", "_", ascii_text).strip("_-")
    slug = slug[:max_length].rstrip("_-")
    return slug or fallback


def filename_from_url(url: str) -> str:
    """Return the decoded last path segment of a URL (may be empty)."""
    path = urlparse(url).path
    name = path.rstrip("/").rsplit("/", 1)[-1]
    return unquote(name)


def title_from_filename(url: str) -> Optional[str]:
    """
    Derive a readable title from a document URL's filename.

    "Edital_FAPES_Universal_2025.pdf" -> "Universal 2025"

    Args:
        url: Document URL

    Returns:
        Title or None when the filename is too short to be meaningful
    """
    name = filename_from_url(url)
    if not name:
        return None

    name = re.sub(r"\.[A-Za-z0-9]{2,4}$", "", name)
    name = normalize_whitespace(name.replace("_", " ").replace("+", " "))
    name = re.sub(r"^edital\s+fapes\s*", "", name, flags=re.IGNORECASE)
    name = re.sub(r"^edital\s*", "", name, flags=re.IGNORECASE)

    if len(name) > 10 and name.lower() not in ("baixar", "download"):
        return name
    return None

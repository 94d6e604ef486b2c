"""
Error hierarchy for the scraping engine.

Per-document and per-record errors are recovered where they happen;
only adapter-level and consolidation-level errors reach the run.
"""

from typing import Optional


class ScraperError(Exception):
    """Base class for all engine errors."""


class ConfigError(ScraperError):
    """Invalid or incomplete configuration."""


class TransientNetworkError(ScraperError):
    """Network failure that persisted through the retry budget."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class ContentValidationError(ScraperError):
    """Downloaded payload is empty, an error page, or otherwise unusable."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class ConversionError(ScraperError):
    """Office-to-PDF conversion failed."""


class NavigationExhausted(ScraperError):
    """All navigation attempts to a URL failed."""

    def __init__(self, url: str, attempts: int, reason: Optional[str] = None):
        message = f"navigation to {url} failed after {attempts} attempt(s)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.reason = reason


class AdapterFatalError(ScraperError):
    """Failure that stops a whole adapter (e.g. rejected login)."""

    def __init__(self, adapter: str, reason: str):
        super().__init__(f"{adapter}: {reason}")
        self.adapter = adapter
        self.reason = reason


class ConsolidationError(ScraperError):
    """Persisted catalog cannot be read; merging would risk data loss."""


def first_line(error: BaseException) -> str:
    """First line of an error message, or the error class name when it is empty."""
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__

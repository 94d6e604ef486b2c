"""
Core layer - stable foundation for the scraping engine.

Components:
- models: CallRecord, DocumentReference, Catalog
- navigator: Page navigation with retry and backoff
- signatures: Binary file-type classification
- converter: Office-to-PDF normalization
- discovery: Document link discovery on rendered pages
- http_client: Rate-limited, retrying HTTP client
- acquisition: Download, validation and content-addressed storage
- consolidation: Record identity and catalog merging
"""

from .models import CallRecord, Catalog, DocumentReference
from .errors import (
    AdapterFatalError,
    ConfigError,
    ConsolidationError,
    ContentValidationError,
    ConversionError,
    NavigationExhausted,
    ScraperError,
    TransientNetworkError,
)
from .navigator import ResilientNavigator
from .signatures import Classification, FileKind, classify
from .converter import FormatNormalizer
from .discovery import DiscoveredLink, DiscoveryConfig, LinkDiscoverer, PageSnapshot
from .http_client import HttpClient
from .acquisition import ArtifactStore, DocumentAcquirer
from .consolidation import CatalogStore, ConsolidationResult, consolidate, identity_key

__all__ = [
    "CallRecord",
    "Catalog",
    "DocumentReference",
    "AdapterFatalError",
    "ConfigError",
    "ConsolidationError",
    "ContentValidationError",
    "ConversionError",
    "NavigationExhausted",
    "ScraperError",
    "TransientNetworkError",
    "ResilientNavigator",
    "Classification",
    "FileKind",
    "classify",
    "FormatNormalizer",
    "DiscoveredLink",
    "DiscoveryConfig",
    "LinkDiscoverer",
    "PageSnapshot",
    "HttpClient",
    "ArtifactStore",
    "DocumentAcquirer",
    "CatalogStore",
    "ConsolidationResult",
    "consolidate",
    "identity_key",
]

"""
Editais Scraper - collects public funding calls from Brazilian portals.

Architecture:
- core/: Stable foundation (models, navigation, discovery, acquisition, consolidation)
- adapters/: One adapter per portal (FAPES, CNPq, SIGFAPES)
- config/: YAML-driven engine and site definitions
"""

__version__ = "0.1.0"
__all__ = ["__version__"]

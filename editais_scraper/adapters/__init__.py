"""
Site adapters.

Importing this package registers every built-in adapter.
"""

from .base import AdapterStats, SiteAdapter
from .browser import BrowserSession
from .registry import available_adapters, get_adapter_class, register_adapter
from . import cnpq, fapes, sigfapes  # noqa: F401  (registration)

__all__ = [
    "AdapterStats",
    "SiteAdapter",
    "BrowserSession",
    "available_adapters",
    "get_adapter_class",
    "register_adapter",
]

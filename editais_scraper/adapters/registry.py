"""
Adapter registry.

Site adapters register themselves by name with the register_adapter
decorator; configuration refers to them by that name.
"""

import structlog

from editais_scraper.core.errors import ConfigError

logger = structlog.get_logger(__name__)

ADAPTERS: dict[str, type] = {}


def register_adapter(name: str):
    """
    Decorator registering a SiteAdapter subclass under a name.

    Args:
        name: Adapter name used in sites.yml
    """
    def decorator(cls: type) -> type:
        if name in ADAPTERS and ADAPTERS[name] is not cls:
            raise ValueError(f"Adapter already registered: {name}")
        cls.name = name
        ADAPTERS[name] = cls
        logger.debug("adapter_registered", adapter=name, cls=cls.__name__)
        return cls
    return decorator


def get_adapter_class(name: str) -> type:
    """
    Look up an adapter class.

    Raises:
        ConfigError: If no adapter is registered under name
    """
    try:
        return ADAPTERS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown adapter: {name} (available: {', '.join(available_adapters())})"
        ) from None


def available_adapters() -> list[str]:
    return sorted(ADAPTERS)

"""
YAML configuration loader.

Loads engine settings and site definitions from sites.yml with:
- Environment variable substitution
- Required-field validation
- Default values
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from editais_scraper.core.discovery import DiscoveryConfig
from editais_scraper.core.errors import ConfigError

logger = structlog.get_logger(__name__)


DEFAULT_CONFIG_FILE = "sites.yml"


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variables in text.

    Supports formats:
    - ${VAR_NAME} - required, warning and empty string if missing
    - ${VAR_NAME:-default} - optional with default

    Args:
        text: Text with env var placeholders

    Returns:
        Text with substituted values
    """
    def replace(match):
        var_expr = match.group(1)
        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)
        else:
            value = os.getenv(var_expr)
            if value is None:
                logger.warning("env_var_not_set", var=var_expr)
                return ""
            return value

    return re.sub(r"\$\{([^}]+)\}", replace, text)


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class NavigationSettings:
    max_attempts: int = 3
    base_delay: float = 5.0
    timeout_ms: int = 60000
    settle_delay: float = 2.0
    wait_until: str = "domcontentloaded"


@dataclass
class HttpSettings:
    timeout: float = 60.0
    requests_per_second: float = 2.0
    max_retries: int = 3


@dataclass
class ConversionSettings:
    enabled: bool = True
    soffice_binary: str = "soffice"
    timeout: float = 120.0


@dataclass
class EngineConfig:
    """Settings shared by every adapter."""
    output_dir: str = "output"
    catalog_file: str = "editais.json"
    artifacts_dir: str = "documents"
    headless: bool = True
    download_delay: float = 1.0
    navigation: NavigationSettings = field(default_factory=NavigationSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    conversion: ConversionSettings = field(default_factory=ConversionSettings)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)

    @property
    def catalog_path(self) -> Path:
        return Path(self.output_dir) / self.catalog_file

    @property
    def artifacts_path(self) -> Path:
        return Path(self.output_dir) / self.artifacts_dir

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "EngineConfig":
        data = data or {}
        navigation = data.get("navigation") or {}
        http = data.get("http") or {}
        conversion = data.get("conversion") or {}
        try:
            return cls(
                output_dir=str(data.get("output_dir", "output")),
                catalog_file=str(data.get("catalog_file", "editais.json")),
                artifacts_dir=str(data.get("artifacts_dir", "documents")),
                headless=_as_bool(data.get("headless"), True),
                download_delay=float(data.get("download_delay", 1.0)),
                navigation=NavigationSettings(
                    max_attempts=int(navigation.get("max_attempts", 3)),
                    base_delay=float(navigation.get("base_delay", 5.0)),
                    timeout_ms=int(navigation.get("timeout_ms", 60000)),
                    settle_delay=float(navigation.get("settle_delay", 2.0)),
                    wait_until=str(navigation.get("wait_until", "domcontentloaded")),
                ),
                http=HttpSettings(
                    timeout=float(http.get("timeout", 60.0)),
                    requests_per_second=float(http.get("requests_per_second", 2.0)),
                    max_retries=int(http.get("max_retries", 3)),
                ),
                conversion=ConversionSettings(
                    enabled=_as_bool(conversion.get("enabled"), True),
                    soffice_binary=str(conversion.get("soffice_binary", "soffice")),
                    timeout=float(conversion.get("timeout", 120.0)),
                ),
                discovery=DiscoveryConfig.from_dict(data.get("discovery")),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid engine settings: {e}") from e


@dataclass
class SiteConfig:
    """Configuration of one crawled site."""
    site_id: str
    name: str
    adapter: str
    base_url: str
    listing_url: str
    enabled: bool = True
    expected_host: Optional[str] = None
    credentials: dict[str, str] = field(default_factory=dict)
    discovery: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    REQUIRED_FIELDS = ("site_id", "base_url", "listing_url")

    @classmethod
    def from_dict(cls, data: dict) -> "SiteConfig":
        """
        Parse a site definition.

        Args:
            data: Site definition dict

        Returns:
            SiteConfig object

        Raises:
            ConfigError: If required fields are missing
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Site definition must be a mapping, got {type(data).__name__}")

        for name in cls.REQUIRED_FIELDS:
            if not data.get(name):
                raise ConfigError(f"Site {data.get('site_id', '?')}: missing required field {name}")

        credentials = {k: str(v) for k, v in (data.get("credentials") or {}).items() if v not in (None, "")}
        return cls(
            site_id=str(data["site_id"]),
            name=str(data.get("name", data["site_id"])),
            adapter=str(data.get("adapter", data["site_id"])),
            base_url=str(data["base_url"]),
            listing_url=str(data["listing_url"]),
            enabled=_as_bool(data.get("enabled"), True),
            expected_host=data.get("expected_host") or None,
            credentials=credentials,
            discovery=dict(data.get("discovery") or {}),
            options=dict(data.get("options") or {}),
        )


@dataclass
class AppConfig:
    engine: EngineConfig
    sites: list[SiteConfig]

    def enabled_sites(self) -> list[SiteConfig]:
        return [site for site in self.sites if site.enabled]


class ConfigLoader:
    """
    Configuration loader for the engine and its sites.

    Loads YAML config files and validates the expected fields.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing config files
                       (defaults to package config directory)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(__file__).parent

    def load_file(self, filename: str) -> dict:
        """
        Load YAML config file.

        Args:
            filename: Config file name (relative to config_dir)

        Returns:
            Parsed config dict

        Raises:
            ConfigError: If the file is missing or not valid YAML
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise ConfigError(f"Config file not found: {filepath}")

        logger.info("loading_config", file=str(filepath))

        with open(filepath, "r", encoding="utf-8") as f:
            content = f.read()

        # Substitute environment variables
        content = substitute_env_vars(content)

        try:
            config = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {filepath}: {e}") from e

        if config is not None and not isinstance(config, dict):
            raise ConfigError(f"Config root must be a mapping: {filepath}")
        return config or {}

    def load(self, filename: str = DEFAULT_CONFIG_FILE) -> AppConfig:
        """
        Load engine settings and site definitions.

        Args:
            filename: Config file name

        Returns:
            AppConfig
        """
        config = self.load_file(filename)
        engine = EngineConfig.from_dict(config.get("engine"))

        sites = []
        seen = set()
        for site_data in config.get("sites") or []:
            site = SiteConfig.from_dict(site_data)
            if site.site_id in seen:
                raise ConfigError(f"Duplicate site_id: {site.site_id}")
            seen.add(site.site_id)
            sites.append(site)
            logger.info("site_loaded", site_id=site.site_id, enabled=site.enabled)

        return AppConfig(engine=engine, sites=sites)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Convenience function to load the application config.

    Args:
        config_path: Optional path to sites.yml

    Returns:
        AppConfig
    """
    if config_path:
        path = Path(config_path)
        return ConfigLoader(str(path.parent)).load(path.name)
    return ConfigLoader().load()

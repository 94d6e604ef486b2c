"""
Configuration module for the engine and its sites.

Provides:
- YAML config loading with validation
- Site definitions
- Environment variable substitution
"""

from .loader import AppConfig, ConfigLoader, EngineConfig, SiteConfig, load_config

__all__ = ["AppConfig", "ConfigLoader", "EngineConfig", "SiteConfig", "load_config"]

"""Tests for configuration loading."""

import pytest

from editais_scraper.config.loader import (
    ConfigLoader,
    EngineConfig,
    SiteConfig,
    load_config,
    substitute_env_vars,
)
from editais_scraper.core.errors import ConfigError


class TestSubstituteEnvVars:
    """Tests for environment variable substitution."""

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("EDITAIS_TEST_DIR", "/data")
        assert substitute_env_vars("dir: ${EDITAIS_TEST_DIR}") == "dir: /data"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("EDITAIS_TEST_MISSING", raising=False)
        assert substitute_env_vars("x: ${EDITAIS_TEST_MISSING:-fallback}") == "x: fallback"
        assert substitute_env_vars('x: "${EDITAIS_TEST_MISSING:-}"') == 'x: ""'

    def test_missing_required(self, monkeypatch):
        monkeypatch.delenv("EDITAIS_TEST_MISSING", raising=False)
        assert substitute_env_vars("x: ${EDITAIS_TEST_MISSING}") == "x: "


class TestPackagedConfig:
    """Tests for the bundled sites.yml."""

    def test_sites(self, monkeypatch):
        monkeypatch.delenv("SIGFAPES_ENABLED", raising=False)
        monkeypatch.delenv("SIGFAPES_USERNAME", raising=False)
        monkeypatch.delenv("SIGFAPES_PASSWORD", raising=False)

        config = ConfigLoader().load()

        assert [s.site_id for s in config.sites] == ["fapes", "cnpq", "sigfapes"]
        assert [s.site_id for s in config.enabled_sites()] == ["fapes", "cnpq"]
        sigfapes = config.sites[2]
        assert sigfapes.credentials == {}
        assert sigfapes.options["max_accordion_clicks"] == 30

    def test_credentials_from_environment(self, monkeypatch):
        monkeypatch.setenv("SIGFAPES_ENABLED", "true")
        monkeypatch.setenv("SIGFAPES_USERNAME", "12345678900")
        monkeypatch.setenv("SIGFAPES_PASSWORD", "s3cr3t")

        config = ConfigLoader().load()
        sigfapes = next(s for s in config.sites if s.site_id == "sigfapes")

        assert sigfapes.enabled is True
        assert sigfapes.credentials == {"username": "12345678900", "password": "s3cr3t"}

    def test_engine_defaults(self, monkeypatch):
        monkeypatch.delenv("EDITAIS_OUTPUT_DIR", raising=False)
        engine = ConfigLoader().load().engine

        assert engine.navigation.max_attempts == 3
        assert engine.navigation.base_delay == 5.0
        assert engine.catalog_path.as_posix() == "output/editais.json"
        assert "facebook.com" in engine.discovery.url_denylist

    def test_cnpq_discovery_overrides(self):
        cnpq = next(s for s in ConfigLoader().load().sites if s.site_id == "cnpq")
        assert cnpq.discovery["intermediate_hosts"] == ["resultado.cnpq.br"]


class TestValidation:
    """Tests for configuration errors."""

    def write(self, tmp_path, text):
        path = tmp_path / "sites.yml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "nope.yml"))

    def test_invalid_yaml(self, tmp_path):
        path = self.write(tmp_path, "sites: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(str(path))

    def test_missing_required_field(self, tmp_path):
        path = self.write(tmp_path, "sites:\n  - site_id: fapes\n    base_url: https://fapes.es.gov.br\n")
        with pytest.raises(ConfigError, match="listing_url"):
            load_config(str(path))

    def test_duplicate_site(self, tmp_path):
        site = "  - site_id: fapes\n    base_url: https://a\n    listing_url: https://a/l\n"
        path = self.write(tmp_path, "sites:\n" + site + site)
        with pytest.raises(ConfigError, match="Duplicate"):
            load_config(str(path))

    def test_bad_engine_value(self):
        with pytest.raises(ConfigError):
            EngineConfig.from_dict({"navigation": {"max_attempts": "three"}})

    def test_site_defaults(self):
        site = SiteConfig.from_dict({"site_id": "cnpq", "base_url": "http://a", "listing_url": "http://a/b"})
        assert site.adapter == "cnpq"
        assert site.name == "cnpq"
        assert site.enabled is True

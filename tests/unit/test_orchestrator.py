"""Tests for the run orchestrator."""

import json
from dataclasses import replace

import pytest

from editais_scraper.adapters import AdapterStats
from editais_scraper.adapters.cnpq import CnpqAdapter
from editais_scraper.adapters.fapes import FapesAdapter
from editais_scraper.config.loader import AppConfig
from editais_scraper.core.consolidation import CatalogStore
from editais_scraper.core.errors import AdapterFatalError, ConfigError, ConsolidationError
from editais_scraper.core.models import CallRecord
from editais_scraper.orchestrator import Orchestrator, build_adapters, run_scraper


class FakeAdapter:
    """Duck-typed adapter returning canned records or raising."""

    def __init__(self, name, records=None, error=None, cleanup_error=None):
        self.name = name
        self.records = records or []
        self.error = error
        self.cleanup_error = cleanup_error
        self.stats = AdapterStats()
        self.ran = False
        self.cleaned = False

    async def run(self):
        self.ran = True
        if self.error:
            raise self.error
        self.stats.listings_seen = len(self.records)
        return self.records

    async def cleanup(self):
        self.cleaned = True
        if self.cleanup_error:
            raise self.cleanup_error


def record(site, title, number=None):
    return CallRecord(source_site_id=site, title=title, external_number=number)


@pytest.fixture
def catalog_store(tmp_path):
    return CatalogStore(str(tmp_path / "editais.json"))


class TestOrchestrator:
    """Tests for Orchestrator.run()."""

    @pytest.mark.asyncio
    async def test_failure_isolation(self, catalog_store):
        """Test one adapter failing does not stop the others."""
        fatal = FakeAdapter("sigfapes", error=AdapterFatalError("sigfapes", "credentials rejected"))
        crash = FakeAdapter("cnpq", error=RuntimeError("boom"))
        ok = FakeAdapter("fapes", records=[record("fapes", "Edital FAPES Nº 12/2025 - Universal", "12/2025")])

        result = await Orchestrator([fatal, crash, ok], catalog_store).run()

        assert [s.failure for s in result.summaries] == ["credentials rejected", "RuntimeError: boom", None]
        assert result.catalog.keys() == ["fapes:12/2025"]
        assert result.all_failed is False
        assert all(a.cleaned for a in (fatal, crash, ok))

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_not_fatal(self, catalog_store):
        adapter = FakeAdapter("fapes", records=[record("fapes", "Chamada Universal")], cleanup_error=OSError("gone"))

        result = await Orchestrator([adapter], catalog_store).run()

        assert result.summaries[0].failed is False
        assert len(result.catalog) == 1

    @pytest.mark.asyncio
    async def test_summary_counts_valid_records(self, catalog_store):
        adapter = FakeAdapter("fapes", records=[
            record("fapes", "Edital FAPES Nº 12/2025", "12/2025"),
            record("fapes", "Anexo II - Formulário"),
        ])

        result = await Orchestrator([adapter], catalog_store).run()
        summary = result.summaries[0]

        assert summary.records_discovered == 2
        assert summary.records_valid == 1
        assert result.consolidation.rejected == 1

    @pytest.mark.asyncio
    async def test_catalog_saved(self, catalog_store):
        adapter = FakeAdapter("cnpq", records=[record("cnpq", "Chamada CNPq Nº 7/2025", "7/2025")])

        await Orchestrator([adapter], catalog_store).run()

        data = json.loads(catalog_store.path.read_text(encoding="utf-8"))
        assert [item["external_number"] for item in data] == ["7/2025"]

    @pytest.mark.asyncio
    async def test_merges_with_persisted_catalog(self, catalog_store):
        first = FakeAdapter("cnpq", records=[record("cnpq", "Chamada CNPq Nº 7/2025", "7/2025")])
        await Orchestrator([first], catalog_store).run()

        second = FakeAdapter("fapes", records=[record("fapes", "Edital FAPES Nº 1/2025", "1/2025")])
        result = await Orchestrator([second], catalog_store).run()

        assert result.catalog.keys() == ["cnpq:7/2025", "fapes:1/2025"]

    @pytest.mark.asyncio
    async def test_dry_run_does_not_save(self, catalog_store):
        adapter = FakeAdapter("fapes", records=[record("fapes", "Chamada Universal")])

        result = await Orchestrator([adapter], catalog_store, dry_run=True).run()

        assert len(result.catalog) == 1
        assert not catalog_store.path.exists()

    @pytest.mark.asyncio
    async def test_corrupt_catalog_stops_before_crawling(self, catalog_store):
        catalog_store.path.write_text("[{broken", encoding="utf-8")
        adapter = FakeAdapter("fapes", records=[record("fapes", "Chamada Universal")])

        with pytest.raises(ConsolidationError):
            await Orchestrator([adapter], catalog_store).run()

        assert adapter.ran is False
        assert catalog_store.path.read_text(encoding="utf-8") == "[{broken"

    @pytest.mark.asyncio
    async def test_all_failed(self, catalog_store):
        adapters = [
            FakeAdapter("fapes", error=RuntimeError("down")),
            FakeAdapter("cnpq", error=AdapterFatalError("cnpq", "listing unreachable")),
        ]

        result = await Orchestrator(adapters, catalog_store).run()

        assert result.all_failed is True
        assert len(result.catalog) == 0

    @pytest.mark.asyncio
    async def test_no_adapters_is_not_a_failure(self, catalog_store):
        result = await Orchestrator([], catalog_store).run()
        assert result.all_failed is False


class TestBuildAdapters:
    """Tests for adapter construction from configuration."""

    @pytest.fixture
    def config(self, engine, fapes_site, cnpq_site):
        return AppConfig(engine=engine, sites=[fapes_site, replace(cnpq_site, enabled=False)])

    def test_enabled_sites_by_default(self, config, store):
        adapters = build_adapters(config, store)
        assert [type(a) for a in adapters] == [FapesAdapter]

    def test_named_disabled_source_runs(self, config, store):
        adapters = build_adapters(config, store, ["cnpq"])
        assert [type(a) for a in adapters] == [CnpqAdapter]
        assert adapters[0].site.enabled is False

    def test_unknown_source(self, config, store):
        with pytest.raises(ConfigError, match="Unknown sources: capes"):
            build_adapters(config, store, ["fapes", "capes"])

    def test_unknown_adapter(self, config, store):
        config.sites[0] = replace(config.sites[0], adapter="nope")
        with pytest.raises(ConfigError, match="Unknown adapter: nope"):
            build_adapters(config, store)


class TestRunScraper:
    """Tests for run_scraper()."""

    @pytest.mark.asyncio
    async def test_nothing_enabled(self, engine, fapes_site):
        config = AppConfig(engine=engine, sites=[replace(fapes_site, enabled=False)])

        result = await run_scraper(config)

        assert result.summaries == []
        assert engine.catalog_path.exists()

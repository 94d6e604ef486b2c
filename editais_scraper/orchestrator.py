"""
Run orchestrator for the editais scraping pipeline.

Coordinates:
- Catalog loading (before any crawling)
- Sequential adapter execution with per-adapter failure isolation
- A single consolidation over every collected record
- Atomic catalog persistence
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Optional

import structlog

from .adapters import SiteAdapter, get_adapter_class
from .config.loader import AppConfig
from .core.acquisition import ArtifactStore
from .core.consolidation import CatalogStore, ConsolidationResult, consolidate, validate_record
from .core.errors import AdapterFatalError, ConfigError
from .core.models import CallRecord, Catalog

logger = structlog.get_logger(__name__)


@dataclass
class AdapterSummary:
    """Per-adapter outcome of a run."""
    adapter: str
    records_discovered: int = 0
    records_valid: int = 0
    records_failed: int = 0
    documents_discovered: int = 0
    documents_acquired: int = 0
    documents_failed: int = 0
    failure: Optional[str] = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.failure is not None


@dataclass
class RunResult:
    catalog: Catalog
    consolidation: ConsolidationResult
    summaries: list[AdapterSummary] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return bool(self.summaries) and all(s.failed for s in self.summaries)


class Orchestrator:
    """
    Runs adapters one after another and consolidates their records.

    Usage:
        orchestrator = Orchestrator(adapters, CatalogStore("output/editais.json"))
        result = await orchestrator.run()
    """

    def __init__(
        self,
        adapters: list[SiteAdapter],
        catalog_store: CatalogStore,
        dry_run: bool = False,
    ):
        """
        Initialize orchestrator.

        Args:
            adapters: Adapters in execution order
            catalog_store: Persistence for the catalog
            dry_run: Crawl and consolidate without writing the catalog
        """
        self.adapters = adapters
        self.catalog_store = catalog_store
        self.dry_run = dry_run

    async def run(self) -> RunResult:
        """
        Execute the pipeline.

        Returns:
            RunResult

        Raises:
            ConsolidationError: If the persisted catalog is unreadable
        """
        # A corrupt catalog must stop the run before anything is crawled
        existing = self.catalog_store.load()

        candidates: list[CallRecord] = []
        summaries: list[AdapterSummary] = []

        for adapter in self.adapters:
            records, summary = await self._run_adapter(adapter)
            candidates.extend(records)
            summaries.append(summary)

        result = consolidate(existing, candidates)

        if self.dry_run:
            logger.info("dry_run_catalog_not_saved", records=len(result.catalog))
        else:
            self.catalog_store.save(result.catalog)

        logger.info(
            "run_complete",
            adapters=len(summaries),
            failed_adapters=sum(1 for s in summaries if s.failed),
            candidates=len(candidates),
            catalog=len(result.catalog),
        )
        return RunResult(catalog=result.catalog, consolidation=result, summaries=summaries)

    async def _run_adapter(self, adapter: SiteAdapter) -> tuple[list[CallRecord], AdapterSummary]:
        summary = AdapterSummary(adapter=adapter.name)
        records: list[CallRecord] = []
        started = time.monotonic()

        logger.info("adapter_run_started", adapter=adapter.name)
        try:
            records = await adapter.run()
        except AdapterFatalError as e:
            summary.failure = e.reason
            logger.error("adapter_fatal", adapter=adapter.name, reason=e.reason)
        except Exception as e:
            summary.failure = f"{type(e).__name__}: {e}"
            logger.exception("adapter_failed", adapter=adapter.name, error=str(e))
        finally:
            try:
                await adapter.cleanup()
            except Exception as e:
                logger.warning("adapter_cleanup_failed", adapter=adapter.name, error=str(e))

        stats = adapter.stats
        summary.records_discovered = stats.listings_seen
        summary.records_valid = sum(1 for r in records if validate_record(r) is None)
        summary.records_failed = stats.records_failed
        summary.documents_discovered = stats.documents_discovered
        summary.documents_acquired = stats.documents_acquired
        summary.documents_failed = stats.documents_failed
        summary.duration = round(time.monotonic() - started, 2)

        logger.info("adapter_summary", **asdict(summary))
        return records, summary


def build_adapters(
    config: AppConfig,
    store: ArtifactStore,
    sources: Optional[list[str]] = None,
) -> list[SiteAdapter]:
    """
    Instantiate the configured adapters.

    Args:
        config: Application config
        store: Artifact store shared by every adapter
        sources: site_ids to run; explicitly named sites run even when
                 disabled in the config (default: every enabled site)

    Returns:
        Adapters in configuration order

    Raises:
        ConfigError: For unknown site ids or adapter names
    """
    if sources:
        known = {site.site_id for site in config.sites}
        unknown = [s for s in sources if s not in known]
        if unknown:
            raise ConfigError(f"Unknown sources: {', '.join(unknown)}")
        sites = [site for site in config.sites if site.site_id in sources]
    else:
        sites = config.enabled_sites()

    adapters = []
    for site in sites:
        adapter_class = get_adapter_class(site.adapter)
        adapters.append(adapter_class(site=site, engine=config.engine, store=store))
    return adapters


async def run_scraper(
    config: AppConfig,
    sources: Optional[list[str]] = None,
    dry_run: bool = False,
) -> RunResult:
    """
    Convenience function: build adapters from config and run them.

    Args:
        config: Application config
        sources: Optional site_id filter
        dry_run: Skip persisting the catalog

    Returns:
        RunResult
    """
    engine = config.engine
    store = ArtifactStore(str(engine.artifacts_path))
    adapters = build_adapters(config, store, sources)
    if not adapters:
        logger.warning("no_adapters_to_run")

    orchestrator = Orchestrator(adapters, CatalogStore(str(engine.catalog_path)), dry_run=dry_run)
    return await orchestrator.run()

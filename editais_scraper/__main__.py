"""
CLI entry point for editais-scraper.

Usage:
    python -m editais_scraper
    python -m editais_scraper --sources fapes,cnpq
    python -m editais_scraper --dry-run --log-level DEBUG
"""

import argparse
import asyncio
import logging
import sys

import structlog

# Log level mapping
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logging(level: str = "INFO", json_output: bool = False):
    """Configure structured logging."""
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    if json_output:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="editais-scraper",
        description="Collect open funding calls (editais) and their documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Crawl every enabled site
  python -m editais_scraper

  # Crawl specific sites
  python -m editais_scraper --sources fapes,cnpq

  # Crawl and consolidate without writing the catalog
  python -m editais_scraper --dry-run

  # Use custom config file
  python -m editais_scraper --config /path/to/sites.yml

  # SIGFAPES needs credentials in the environment
  SIGFAPES_USERNAME=... SIGFAPES_PASSWORD=... python -m editais_scraper --sources sigfapes
        """,
    )

    parser.add_argument(
        "--sources",
        type=str,
        help="Comma-separated list of site_ids to crawl (default: all enabled)",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to sites.yml config file",
    )

    parser.add_argument(
        "--output",
        type=str,
        help="Output directory (overrides engine.output_dir)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Crawl and consolidate, but don't write the catalog",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON (for production)",
    )

    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window",
    )

    parser.add_argument(
        "--list-sources",
        action="store_true",
        help="List configured sites and exit",
    )

    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    return parser.parse_args(argv)


def list_sources(config) -> None:
    for site in config.sites:
        state = "enabled" if site.enabled else "disabled"
        print(f"{site.site_id:<12} {site.adapter:<10} {state:<9} {site.listing_url}")


async def main_async(args, config) -> int:
    """Async main function. Returns the process exit code."""
    from .orchestrator import run_scraper

    logger = structlog.get_logger(__name__)

    sources = None
    if args.sources:
        sources = [s.strip() for s in args.sources.split(",") if s.strip()]

    logger.info(
        "starting_editais_scraper",
        sources=sources or "enabled",
        dry_run=args.dry_run,
        output_dir=config.engine.output_dir,
    )

    result = await run_scraper(config, sources=sources, dry_run=args.dry_run)

    consolidation = result.consolidation
    logger.info(
        "scraping_complete",
        catalog=len(result.catalog),
        inserted=consolidation.inserted,
        replaced=consolidation.replaced,
        kept=consolidation.kept,
        rejected=consolidation.rejected,
        purged=consolidation.purged,
        failed_adapters=[s.adapter for s in result.summaries if s.failed],
    )

    if result.all_failed:
        logger.error("all_adapters_failed")
        return 1
    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Version check
    if args.version:
        from . import __version__
        print(f"editais-scraper {__version__}")
        sys.exit(0)

    # Setup logging
    setup_logging(args.log_level, args.json_logs)
    logger = structlog.get_logger(__name__)

    from .config.loader import load_config
    from .core.errors import ScraperError

    try:
        config = load_config(args.config)
        if args.output:
            config.engine.output_dir = args.output
        if args.headful:
            config.engine.headless = False

        if args.list_sources:
            list_sources(config)
            sys.exit(0)

        exit_code = asyncio.run(main_async(args, config))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except ScraperError as e:
        logger.error("fatal_error", error_type=type(e).__name__, error=str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception("fatal_error", error=str(e))
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()

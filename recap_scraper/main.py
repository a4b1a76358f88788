import logging
import sys
from pathlib import Path

import click
import structlog

from recap_scraper.aliases import merge_alias
from recap_scraper.config import GEOCODE_KEY_ENV, load_settings
from recap_scraper.exceptions import ConfigurationError
from recap_scraper.geocode_cache import GeocodeCache
from recap_scraper.geocoder import Geocoder
from recap_scraper.ingest import run_ingestion
from recap_scraper.pool import RecapPool
from recap_scraper.sources.base_source import BaseSource
from recap_scraper.sources.competitionsuite import CompetitionSuiteSource
from recap_scraper.sources.manual_source import ManualSource
from recap_scraper.storage import JsonStore
from recap_scraper.uploader import DivisionRefresh, EventUploader

logger = structlog.get_logger(__name__)


def setup_logging(verbose: bool = False, log_file: str | None = "scraper.log") -> None:
    """Routes structlog through stdlib logging to stdout and a log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _parse_source_option(ctx, param, values) -> list[tuple[str, str]]:
    parsed = []
    for value in values:
        name, sep, season = value.partition("=")
        if not sep or not name or not season:
            raise click.BadParameter(
                f"Expected NAME=SEASON (e.g. WGI=2025), got '{value}'"
            )
        parsed.append((name, season))
    return parsed


@click.group()
def main():
    """Marching percussion recap scraper."""


@main.command()
@click.option("--config", "config_path", help="YAML settings file")
@click.option("--store", "store_dir", help="Store directory (overrides settings)")
@click.option(
    "--source",
    "source_options",
    multiple=True,
    callback=_parse_source_option,
    help="CompetitionSuite season to ingest, as NAME=SEASON",
)
@click.option(
    "--manual", "manual_files", multiple=True, help="YAML file listing recap URLs"
)
@click.option("--pool-size", type=int, help="Number of parser worker processes")
@click.option(
    "--geocode-key",
    envvar=GEOCODE_KEY_ENV,
    help=f"Google Geocoding API key (default: ${GEOCODE_KEY_ENV})",
)
@click.option(
    "--division-refresh",
    type=click.Choice([p.value for p in DivisionRefresh]),
    default=DivisionRefresh.NEWER_THAN_GROUP.value,
    show_default=True,
    help="When a group's division follows a newer recap",
)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def ingest(
    config_path,
    store_dir,
    source_options,
    manual_files,
    pool_size,
    geocode_key,
    division_refresh,
    verbose,
):
    """Ingest recaps from the configured sources into the store."""
    setup_logging(verbose)

    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    if pool_size is not None:
        if pool_size < 1:
            raise click.BadParameter("Pool size must be at least 1.")
        settings.pool_size = pool_size

    sources: list[BaseSource] = []
    for source_config in settings.sources:
        if source_config.type == "competitionsuite":
            sources.append(
                CompetitionSuiteSource(source_config.name, source_config.season)
            )
        else:
            sources.append(ManualSource(source_config.name, source_config.path))
    for name, season in source_options:
        sources.append(CompetitionSuiteSource(name, season))
    for path in manual_files:
        sources.append(ManualSource(Path(path).stem, path))

    if not sources:
        raise click.UsageError("No sources configured. Use --source, --manual or --config.")

    store = JsonStore(store_dir or settings.store_dir)
    geocoder = None
    if geocode_key:
        geocoder = Geocoder(geocode_key, cache=GeocodeCache(settings.geocode_cache_dir))
    else:
        logger.info("geocoding_disabled")

    uploader = EventUploader(
        store,
        geocoder=geocoder,
        division_prefix=settings.division_prefix,
        division_refresh=DivisionRefresh(division_refresh),
    )

    logger.info("starting_ingestion", sources=len(sources), pool_size=settings.pool_size)
    pool = RecapPool(size=settings.pool_size, shutdown_timeout=settings.shutdown_timeout)
    try:
        report = run_ingestion(sources, pool, uploader)
    finally:
        pool.close()

    click.echo(
        f"{len(report.items)} events: {report.succeeded} succeeded "
        f"({report.skipped} skipped), {report.failed} failed"
    )
    for error in report.source_errors:
        click.echo(f"Source failed: {error}", err=True)
    sys.exit(report.exit_code())


@main.command("add-alias")
@click.argument("group_name")
@click.argument("alias")
@click.option("--store", "store_dir", default="data/store", show_default=True)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def add_alias(group_name, alias, store_dir, verbose):
    """Record ALIAS for GROUP_NAME and merge the duplicate groups."""
    setup_logging(verbose, log_file=None)

    result = merge_alias(JsonStore(store_dir), group_name, alias)
    if result is None:
        click.echo(f"Group {group_name} and alias {alias} not found.", err=True)
        sys.exit(1)
    click.echo(
        f"Alias {alias} added to group {group_name} "
        f"({len(result.merged_ids)} merged, {result.events_repointed} events updated)."
    )


if __name__ == "__main__":
    main()

"""Configuration defaults and the optional YAML settings file."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from recap_scraper.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------

DEFAULT_POOL_SIZE = 3
SHUTDOWN_TIMEOUT = 5.0  # seconds a worker gets to exit before it is terminated

# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

# Only recaps of this division family are tracked
TRACKED_DIVISION_PREFIX = "Percussion"

BRIDGE_URL = (
    "https://bridge.competitionsuite.com/api/orgscores/GetCompetitionsBySeason/jsonp"
)
RECAP_URL_TEMPLATE = "https://recaps.competitionsuite.com/{guid}.htm"

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

DEFAULT_DELAY_RANGE = (0.5, 1.5)
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# ---------------------------------------------------------------------------
# Geocoding
# ---------------------------------------------------------------------------

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GEOCODE_TTL_SECONDS = 30 * 24 * 3600
GEOCODE_KEY_ENV = "GEOCODE_API_KEY"

SOURCE_TYPES = ("competitionsuite", "manual")


@dataclass
class SourceConfig:
    type: str
    name: str
    season: str | None = None
    path: str | None = None


@dataclass
class Settings:
    pool_size: int = DEFAULT_POOL_SIZE
    shutdown_timeout: float = SHUTDOWN_TIMEOUT
    division_prefix: str = TRACKED_DIVISION_PREFIX
    store_dir: str = "data/store"
    geocode_cache_dir: str = "cache/geocode"
    sources: list[SourceConfig] = field(default_factory=list)


_SETTING_KEYS = {
    "pool_size",
    "shutdown_timeout",
    "division_prefix",
    "store_dir",
    "geocode_cache_dir",
    "sources",
}


def _parse_source(raw: Any) -> SourceConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Source entry must be a mapping, got: {raw!r}",
            parameter="sources",
            expected_format="{type, name, season|path}",
            example="{type: competitionsuite, name: WGI, season: '2025'}",
        )
    source_type = raw.get("type")
    name = raw.get("name")
    if source_type not in SOURCE_TYPES or not name:
        raise ConfigurationError(
            f"Invalid source entry: {raw!r}",
            parameter="sources",
            expected_format=f"type in {SOURCE_TYPES} and a non-empty name",
            example="{type: manual, name: SCPA, path: events.yaml}",
        )
    season = raw.get("season")
    path = raw.get("path")
    if source_type == "competitionsuite" and season is None:
        raise ConfigurationError(
            f"Source '{name}' needs a season", parameter="season"
        )
    if source_type == "manual" and not path:
        raise ConfigurationError(f"Source '{name}' needs a path", parameter="path")
    return SourceConfig(
        type=source_type,
        name=str(name),
        season=str(season) if season is not None else None,
        path=path,
    )


def load_settings(path: str | None = None) -> Settings:
    """Loads settings from a YAML file, falling back to the defaults.

    Args:
        path: Optional path to the YAML settings file.

    Returns:
        The resolved settings.

    Raises:
        ConfigurationError: If the file is unreadable or contains unknown keys
            or invalid values.
    """
    settings = Settings()
    if not path:
        return settings

    settings_path = Path(path)
    try:
        with open(settings_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Could not read settings file {settings_path}: {e}", parameter="config"
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            "Settings file must contain a mapping", parameter="config"
        )

    unknown = set(data) - _SETTING_KEYS
    if unknown:
        raise ConfigurationError(
            f"Unknown settings: {', '.join(sorted(unknown))}",
            parameter="config",
            error_data={"allowed": sorted(_SETTING_KEYS)},
        )

    if "pool_size" in data:
        pool_size = data["pool_size"]
        if not isinstance(pool_size, int) or pool_size < 1:
            raise ConfigurationError(
                f"pool_size must be a positive integer, got {pool_size!r}",
                parameter="pool_size",
                expected_format="integer >= 1",
                example="3",
            )
        settings.pool_size = pool_size
    if "shutdown_timeout" in data:
        settings.shutdown_timeout = float(data["shutdown_timeout"])
    for key in ("division_prefix", "store_dir", "geocode_cache_dir"):
        if key in data:
            setattr(settings, key, str(data[key]))
    settings.sources = [_parse_source(s) for s in data.get("sources") or []]
    return settings

import hashlib
import json
import time
from pathlib import Path
from typing import Any

import structlog

from recap_scraper.config import GEOCODE_TTL_SECONDS

logger = structlog.get_logger(__name__)

_MISSING = object()


def normalize_address(address: str) -> str:
    """Trims, lower-cases and collapses whitespace for a stable cache key."""
    return " ".join((address or "").strip().lower().split())


class GeocodeCache:
    """Manages a disk-backed cache of geocoding results.

    Files are stored at: {base_dir}/{address_hash}.json where address_hash is
    the first 16 characters of the MD5 hash of the normalized address. Misses
    (``None`` results) are cached as well so failed lookups are not repeated.
    Entries older than ``ttl`` seconds are ignored.
    """

    def __init__(
        self, base_dir: str | None = "cache/geocode", ttl: float = GEOCODE_TTL_SECONDS
    ) -> None:
        """Initialize the geocode cache.

        Args:
            base_dir: Directory for cache files, or None for memory only.
            ttl: Time-to-live of an entry in seconds.
        """
        self.base_dir = Path(base_dir) if base_dir else None
        self.ttl = ttl
        self._memory: dict[str, tuple[float, dict[str, Any] | None]] = {}

    def _hash_key(self, key: str) -> str:
        return hashlib.md5(key.encode("utf-8")).hexdigest()[:16]

    def cache_path(self, address: str) -> Path | None:
        if self.base_dir is None:
            return None
        return self.base_dir / f"{self._hash_key(normalize_address(address))}.json"

    def _fresh(self, cached_at: float) -> bool:
        return time.time() - cached_at < self.ttl

    def get(self, address: str) -> Any:
        """Look up a cached result.

        Returns:
            The cached result dict, None for a cached miss, or the module's
            _MISSING sentinel when nothing (fresh) is cached.
        """
        key = normalize_address(address)
        entry = self._memory.get(key)
        if entry is not None and self._fresh(entry[0]):
            return entry[1]

        path = self.cache_path(address)
        if path is None or not path.exists():
            return _MISSING

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("geocode_cache_read_failed", path=str(path), error=str(e))
            return _MISSING

        cached_at = float(data.get("cached_at", 0))
        if data.get("address") != key or not self._fresh(cached_at):
            return _MISSING

        self._memory[key] = (cached_at, data.get("result"))
        return data.get("result")

    def put(self, address: str, result: dict[str, Any] | None) -> None:
        """Save a result (or a miss) to the cache."""
        key = normalize_address(address)
        cached_at = time.time()
        self._memory[key] = (cached_at, result)

        path = self.cache_path(address)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"address": key, "cached_at": cached_at, "result": result}, f)
            logger.debug("geocode_cache_write_success", path=str(path))
        except OSError as e:
            logger.warning("geocode_cache_write_failed", path=str(path), error=str(e))

    def __len__(self) -> int:
        return len(self._memory)

    @staticmethod
    def is_missing(value: Any) -> bool:
        return value is _MISSING

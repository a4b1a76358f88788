import structlog

from recap_scraper.config import GEOCODE_URL
from recap_scraper.geocode_cache import GeocodeCache
from recap_scraper.models import GeocodeResult
from recap_scraper.scraper import Scraper

logger = structlog.get_logger(__name__)


class Geocoder:
    """Resolves event locations with the Google Geocoding API.

    Results and misses are cached by normalized address, so repeated
    ingestion runs do not hit the API for venues already seen.
    """

    def __init__(
        self,
        api_key: str,
        cache: GeocodeCache | None = None,
        scraper: Scraper | None = None,
    ) -> None:
        self.api_key = api_key
        self.cache = cache or GeocodeCache()
        self.scraper = scraper or Scraper(delay_range=(0.0, 0.2))

    def geocode(self, address: str | None) -> GeocodeResult | None:
        """Geocodes an address.

        Args:
            address: Free-text location, e.g. "Dayton, OH".

        Returns:
            The first match, or None when the address is empty, unknown or the
            request failed.
        """
        if not address or not isinstance(address, str) or not address.strip():
            return None

        cached = self.cache.get(address)
        if not GeocodeCache.is_missing(cached):
            logger.debug("geocode_cache_hit", address=address)
            return GeocodeResult(**cached) if cached else None

        response = self.scraper.get(
            GEOCODE_URL, params={"address": address, "key": self.api_key}
        )
        if response is None:
            # Transport failures are not cached; the next run retries
            logger.error("geocode_request_failed", address=address)
            return None

        try:
            data = response.json()
        except ValueError as e:
            logger.error("geocode_invalid_response", address=address, error=str(e))
            return None

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.warning("geocode_no_match", address=address, status=data.get("status"))
            self.cache.put(address, None)
            return None

        first = results[0]
        location = first["geometry"]["location"]
        result = GeocodeResult(
            lat=float(location["lat"]),
            lng=float(location["lng"]),
            formatted_address=first.get("formatted_address", address),
        )
        self.cache.put(address, result.to_dict())
        logger.info("geocoded", address=address, lat=result.lat, lng=result.lng)
        return result

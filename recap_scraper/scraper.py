import random
import time

import cloudscraper
import structlog
from requests.exceptions import RequestException

from recap_scraper.config import DEFAULT_DELAY_RANGE, USER_AGENT

logger = structlog.get_logger(__name__)

# Statuses worth another attempt; everything else fails fast
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


class Scraper:
    def __init__(self, delay_range=DEFAULT_DELAY_RANGE, timeout=30.0):
        """
        Initialize the Scraper with cloudscraper to bypass Cloudflare.

        The underlying session is expensive to set up, so one Scraper is kept
        alive for the lifetime of a worker and reused across jobs.

        :param delay_range: Tuple (min, max) seconds to sleep between requests.
        :param timeout: Per-request timeout in seconds.
        """
        self.scraper = cloudscraper.create_scraper()
        self.delay_range = delay_range
        self.timeout = timeout
        self.last_request_time = 0

        self.scraper.headers.update({
            'User-Agent': USER_AGENT,
            'Accept-Language': 'en-US,en;q=0.9'
        })

    def _wait_for_rate_limit(self):
        """Sleeps for a random amount of time to respect rate limits."""
        elapsed = time.time() - self.last_request_time
        wait_time = random.uniform(*self.delay_range)
        if elapsed < wait_time:
            sleep_time = wait_time - elapsed
            logger.debug("rate_limit_sleep", seconds=round(sleep_time, 2))
            time.sleep(sleep_time)
        self.last_request_time = time.time()

    def get(self, url, params=None, retries=3):
        """
        Perform a GET request with rate limiting and retries.

        :param url: Target URL.
        :param params: Query parameters.
        :param retries: Number of retries on failure.
        :return: Response object or None if failed.
        """
        self._wait_for_rate_limit()

        for attempt in range(retries):
            try:
                # Only log retries (Attempt 2+)
                if attempt > 0:
                    logger.info("fetching_url", url=url, attempt=attempt + 1, retries=retries)
                else:
                    logger.info("fetching_url", url=url)

                response = self.scraper.get(url, params=params, timeout=self.timeout)
                response.raise_for_status()
                return response
            except RequestException as e:
                status = getattr(getattr(e, 'response', None), 'status_code', None)
                logger.warning("request_failed", url=url, status=status, error=str(e))
                if status is not None and status not in RETRYABLE_STATUSES:
                    logger.error("request_not_retryable", url=url, status=status)
                    return None
                if attempt < retries - 1:
                    time.sleep(2 ** attempt)  # Exponential backoff
                else:
                    logger.error("request_gave_up", url=url, attempts=retries)
                    return None

    def close(self):
        """Releases the underlying session."""
        self.scraper.close()

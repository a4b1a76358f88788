"""Recap worker: fetches a recap page and parses its division sections.

A worker process runs ``run_worker`` and talks to the pool over one end of a
duplex pipe using plain dict messages:

- request ``{"id": str, "url": str}``
- success ``{"id": str, "recaps": [ParsedRecap dict, ...]}``
- failure ``{"id": str, "error": str}``
- control ``{"cmd": "shutdown"}`` (no reply, the worker exits)

``fetch_recaps`` is the direct, pool-less path used as a fallback when a pool
job fails.
"""

import signal
from multiprocessing.connection import Connection
from pathlib import Path
from urllib.parse import unquote, urlparse

import structlog

from recap_scraper.exceptions import NetworkError, RecapError
from recap_scraper.models import ParsedRecap
from recap_scraper.parsers import RecapParser
from recap_scraper.scraper import Scraper

logger = structlog.get_logger(__name__)

SHUTDOWN_COMMAND = "shutdown"


class PageFetcher:
    """Fetches recap pages through one lazily created, long-lived session.

    Instances are pickled into worker processes, so the session itself is only
    created on first use inside the worker. ``file://`` URLs are read from
    disk, which is how locally saved recap pages are re-ingested.
    """

    def __init__(self, delay_range: tuple[float, float] | None = None) -> None:
        self.delay_range = delay_range
        self._scraper: Scraper | None = None

    def __getstate__(self) -> dict:
        state = self.__dict__.copy()
        state["_scraper"] = None
        return state

    def _ensure_scraper(self) -> Scraper:
        if self._scraper is None:
            if self.delay_range is None:
                self._scraper = Scraper()
            else:
                self._scraper = Scraper(delay_range=self.delay_range)
        return self._scraper

    def fetch_html(self, url: str) -> str:
        """Returns the page HTML for a URL.

        Raises:
            NetworkError: If the page cannot be fetched or read.
        """
        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            try:
                return path.read_text(encoding="utf-8")
            except OSError as e:
                raise NetworkError(
                    f"Could not read local recap {path}: {e}",
                    url=url,
                    retryable=False,
                ) from e

        response = self._ensure_scraper().get(url)
        if response is None:
            raise NetworkError(f"Failed to fetch recap page {url}", url=url)
        return response.text

    def fetch_sections(self, url: str) -> list[str]:
        return RecapParser.split_sections(self.fetch_html(url))

    def close(self) -> None:
        if self._scraper is not None:
            try:
                self._scraper.close()
            except Exception as e:
                logger.warning("session_close_failed", error=str(e))
            self._scraper = None


def parse_url(fetcher: PageFetcher, url: str) -> list[ParsedRecap]:
    parser = RecapParser()
    return [parser.parse(section) for section in fetcher.fetch_sections(url)]


def fetch_recaps(url: str, fetcher: PageFetcher | None = None) -> list[ParsedRecap]:
    """Fetches and parses a recap page in the calling process.

    Opens a fresh session for the call and releases it afterwards.
    """
    fetcher = fetcher or PageFetcher()
    try:
        return parse_url(fetcher, url)
    finally:
        fetcher.close()


def run_worker(conn: Connection, fetcher: PageFetcher, slot: int = 0) -> None:
    """Worker process main loop. Handles one job at a time until shutdown."""
    # The parent owns shutdown; a terminal Ctrl-C must not kill workers mid-job
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    log = logger.bind(slot=slot)
    log.debug("worker_started")

    try:
        while True:
            try:
                message = conn.recv()
            except (EOFError, OSError):
                log.warning("worker_pipe_closed")
                break

            if not isinstance(message, dict):
                continue
            if message.get("cmd") == SHUTDOWN_COMMAND:
                log.debug("worker_shutdown_requested")
                break

            job_id = message.get("id")
            url = message.get("url")
            try:
                recaps = parse_url(fetcher, url)
                reply = {"id": job_id, "recaps": [r.to_dict() for r in recaps]}
            except Exception as e:
                log.warning("job_failed", job_id=job_id, url=url, error=str(e))
                error = e.message if isinstance(e, RecapError) else str(e)
                reply = {"id": job_id, "error": error or e.__class__.__name__}
            conn.send(reply)
    finally:
        fetcher.close()
        conn.close()

"""Recap Scraper - competitive-event recap ingestion.

This package fetches recap pages from several scoring sources, parses them in a
pool of long-lived worker processes and merges the results idempotently into a
document store of events and groups.
"""

__version__ = "0.1.0"

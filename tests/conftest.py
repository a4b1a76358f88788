"""Shared pytest fixtures for recap scraper tests."""

from pathlib import Path

import pytest

from recap_scraper.storage import MemoryStore


@pytest.fixture
def test_data_dir() -> Path:
    """Returns the path to the test data directory."""
    return Path(__file__).parent / "data"


@pytest.fixture
def recap_html(test_data_dir: Path) -> str:
    """Loads a saved two-division recap page."""
    return (test_data_dir / "recap_page.html").read_text(encoding="utf-8")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()

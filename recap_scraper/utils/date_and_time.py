import math
import re
from datetime import UTC, date, datetime, time

# Date layouts printed in recap headers and source listings
RECAP_DATE_FORMATS = [
    "%A, %B %d, %Y",  # Saturday, March 15, 2025
    "%A %B %d, %Y",  # Saturday March 15, 2025
    "%B %d, %Y",  # March 15, 2025
    "%b %d, %Y",  # Mar 15, 2025
    "%a, %b %d, %Y",  # Sat, Mar 15, 2025
    "%m/%d/%Y",  # 03/15/2025
    "%Y-%m-%d",  # 2025-03-15
]


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_recap_date(text: str) -> datetime | None:
    """Parses a recap header date into an aware UTC datetime.

    Handles ISO 8601 strings and the textual formats in RECAP_DATE_FORMATS.

    Args:
        text: The date text.

    Returns:
        The parsed datetime, or None if the text matches no known format.
    """
    cleaned = " ".join(text.split())
    if not cleaned:
        return None

    # Ordinal suffixes: "March 15th, 2025"
    cleaned = re.sub(r"(\d{1,2})(st|nd|rd|th)\b", r"\1", cleaned)

    try:
        return _to_utc(datetime.fromisoformat(cleaned.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in RECAP_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue
    return None


def safe_date(value: object) -> datetime | None:
    """Sanitises a loosely typed date value before it is written to the store.

    Accepts datetimes, dates, epoch milliseconds and date strings. Anything
    that does not yield a valid timestamp becomes None so the caller can drop
    the field instead of storing an invalid date. Never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=UTC)
    if isinstance(value, int | float):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_recap_date(value)
    return None


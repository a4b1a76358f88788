import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypedDict

from recap_scraper.exceptions import StructureError

# Synthetic score keys added next to the judged captions
SUBTOTAL_KEY = "Subtotal"
TOTAL_KEY = "Total"


def to_number(value: Any) -> float:
    """Coerces recap score text to a float.

    Non-numeric input yields ``nan`` rather than raising, so callers must not
    assume the coercion succeeded.
    """
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, int | float):
        return float(value)
    if not isinstance(value, str):
        return math.nan
    text = value.strip().replace(",", "")
    if not text:
        return math.nan
    try:
        return float(text)
    except ValueError:
        return math.nan


class ParsedRowDict(TypedDict):
    name: str
    captions: list[str]
    subtotal: str
    total: str


class ParsedRecapDict(TypedDict, total=False):
    division: str
    caption_labels: list[str]
    rows: list[ParsedRowDict]
    date: str | None
    location: str | None
    event_name: str | None


class CoordinatesDict(TypedDict):
    lat: float
    lng: float


class ScoreEntryDict(TypedDict, total=False):
    event_id: str
    date: datetime | None
    scores: dict[str, float]


class RecapRowDict(TypedDict, total=False):
    name: str
    captions: list[float]
    subtotal: float
    total: float
    group_id: str


class RecapDict(TypedDict, total=False):
    """Stored recap: numeric rows with their resolved group ids."""

    division: str
    caption_labels: list[str]
    rows: list[RecapRowDict]
    date: datetime
    location: str | None


class EventDict(TypedDict, total=False):
    name: str
    source: str
    recap_url: str
    recaps: list[RecapDict]
    coordinates: CoordinatesDict
    formatted_address: str
    date: datetime


class GroupDict(TypedDict, total=False):
    name: str
    name_lower: str
    aliases: list[str]
    aliases_lower: list[str]
    division: str
    source: str
    scores: list[ScoreEntryDict]
    date: datetime


@dataclass
class ParsedRow:
    """One participant row of a recap. Every value is still raw text."""

    name: str
    captions: list[str] = field(default_factory=list)
    subtotal: str = ""
    total: str = ""

    def score_map(self, caption_labels: list[str]) -> dict[str, float]:
        """Zips caption labels with this row's caption scores by index.

        Adds the synthetic ``Subtotal`` and ``Total`` keys.

        Raises:
            StructureError: If the number of scores differs from the number
                of caption labels.
        """
        if len(caption_labels) != len(self.captions):
            raise StructureError(
                f"Row '{self.name}' has {len(self.captions)} caption scores "
                f"for {len(caption_labels)} caption labels",
                error_data={"row": self.name, "captions": list(caption_labels)},
            )
        scores = {
            label: to_number(value)
            for label, value in zip(caption_labels, self.captions, strict=True)
        }
        scores[SUBTOTAL_KEY] = to_number(self.subtotal)
        scores[TOTAL_KEY] = to_number(self.total)
        return scores

    def to_dict(self) -> ParsedRowDict:
        return {
            "name": self.name,
            "captions": list(self.captions),
            "subtotal": self.subtotal,
            "total": self.total,
        }


@dataclass
class ParsedRecap:
    """
    One division's result sheet for one event, as parsed from the page.

    ``date`` is the raw header text until the uploader sanitises it; it may
    also be a ``datetime`` when a source adapter already knows the date.
    """

    division: str
    caption_labels: list[str] = field(default_factory=list)
    rows: list[ParsedRow] = field(default_factory=list)
    date: datetime | str | None = None
    location: str | None = None
    event_name: str | None = None

    def to_dict(self) -> ParsedRecapDict:
        """Message-protocol form of the recap (plain, picklable values)."""
        date = self.date.isoformat() if isinstance(self.date, datetime) else self.date
        return {
            "division": self.division,
            "caption_labels": list(self.caption_labels),
            "rows": [r.to_dict() for r in self.rows],
            "date": date,
            "location": self.location,
            "event_name": self.event_name,
        }

    @classmethod
    def from_dict(cls, data: ParsedRecapDict) -> "ParsedRecap":
        return cls(
            division=data.get("division", ""),
            caption_labels=list(data.get("caption_labels", [])),
            rows=[
                ParsedRow(
                    name=r.get("name", ""),
                    captions=list(r.get("captions", [])),
                    subtotal=r.get("subtotal", ""),
                    total=r.get("total", ""),
                )
                for r in data.get("rows", [])
            ],
            date=data.get("date"),
            location=data.get("location"),
            event_name=data.get("event_name"),
        )


@dataclass
class CandidateEvent:
    """A freshly parsed source event, not yet merged into the store."""

    name: str
    source: str
    recap_url: str
    recaps: list[ParsedRecap] = field(default_factory=list)
    date: datetime | str | None = None


@dataclass
class SourceEvent:
    """An event listed by a source adapter, before its recap page is parsed."""

    name: str
    source: str
    recap_url: str


@dataclass
class GeocodeResult:
    lat: float
    lng: float
    formatted_address: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "formatted_address": self.formatted_address,
        }

import re

import structlog
from bs4 import BeautifulSoup, Tag

from recap_scraper.exceptions import StructureError
from recap_scraper.models import ParsedRecap, ParsedRow

logger = structlog.get_logger(__name__)

# Each division of a recap page is wrapped in a div with this inline style
SECTION_STYLE = re.compile(r"margin-top:\s*30px")

# Leading spacer cells and trailing summary cells (subtotal, penalties,
# grand total) of the caption header row
LEADING_SPACER_CELLS = 2
TRAILING_SUMMARY_CELLS = 3

# Rows between the caption header and the first participant row
DISCARDED_HEADER_ROWS = 2


def _text(tag: Tag | None) -> str:
    if tag is None:
        return ""
    return " ".join(tag.get_text(" ", strip=True).split())


def _direct_rows(table: Tag) -> list[Tag]:
    """Returns the table's own rows, with or without an explicit tbody."""
    container = table.find("tbody", recursive=False) or table
    return container.find_all("tr", recursive=False)


def _direct_cells(row: Tag) -> list[Tag]:
    return row.find_all("td", recursive=False)


def _score_text(cell: Tag | None) -> str:
    """Reads the score value out of a nested score cell."""
    if cell is None:
        return ""
    score = cell.select_one("td.score")
    return _text(score)


class RecapParser:
    """Parses recap pages into structured, still-textual recap records.

    Numeric fields are left as text: a malformed score yields a structurally
    valid recap whose values fail numeric coercion later, never an exception.
    Missing substructures (division header, score table) raise
    StructureError.
    """

    @staticmethod
    def split_sections(html: str) -> list[str]:
        """Splits a full recap page into one markup fragment per division."""
        soup = BeautifulSoup(html, "lxml")
        sections = soup.find_all("div", style=SECTION_STYLE)
        return [str(section) for section in sections]

    def parse_page(self, html: str) -> list[ParsedRecap]:
        """Parses every division section of a full recap page."""
        return [self.parse(fragment) for fragment in self.split_sections(html)]

    def parse(self, fragment: str) -> ParsedRecap:
        """Parses one division section of a recap page.

        Args:
            fragment: HTML of a single section.

        Returns:
            The parsed recap.

        Raises:
            StructureError: If the division cell, the score table or a row's
                caption scores are missing or misaligned.
        """
        soup = BeautifulSoup(fragment, "lxml")
        section = soup.find("div")
        if section is None:
            raise StructureError(
                "Recap fragment has no section element",
                selector="div",
                html_snippet=fragment,
            )

        event_name, location, date_text = self._parse_header(section)

        division_row = section.select_one("tr.header-division-name")
        if division_row is None:
            raise StructureError(
                "Recap fragment has no division header",
                selector="tr.header-division-name",
                html_snippet=fragment,
            )
        division = _text(division_row.find("td"))
        if not division:
            raise StructureError(
                "Recap division header has no division name",
                selector="tr.header-division-name > td",
                html_snippet=fragment,
            )

        score_table = self._find_score_table(division_row)
        if score_table is None:
            raise StructureError(
                f"Division '{division}' has no score table",
                division=division,
                selector="tr > td > table",
                html_snippet=fragment,
            )

        rows = _direct_rows(score_table)
        if not rows:
            raise StructureError(
                f"Division '{division}' score table is empty",
                division=division,
                html_snippet=fragment,
            )

        caption_labels = self._parse_caption_labels(rows[0])
        body_rows = rows[1 + DISCARDED_HEADER_ROWS :]

        parsed_rows = []
        for row in body_rows:
            if row.find("td", class_="topBorder") is None:
                continue
            parsed = self._parse_row(row)
            if len(parsed.captions) != len(caption_labels):
                raise StructureError(
                    f"Row '{parsed.name}' in '{division}' has "
                    f"{len(parsed.captions)} caption scores for "
                    f"{len(caption_labels)} captions",
                    division=division,
                    selector="td.subcaptionTotal",
                    html_snippet=str(row),
                )
            parsed_rows.append(parsed)

        logger.debug(
            "recap_parsed",
            division=division,
            captions=len(caption_labels),
            rows=len(parsed_rows),
        )

        return ParsedRecap(
            division=division,
            caption_labels=caption_labels,
            rows=parsed_rows,
            date=date_text or None,
            location=location or None,
            event_name=event_name or None,
        )

    def _parse_header(self, section: Tag) -> tuple[str, str, str]:
        """Reads (event name, location, date text) from the section header.

        The header is the third child div of the section: a table whose second
        cell stacks the event name, location and date in three divs.
        """
        children = [c for c in section.children if isinstance(c, Tag)]
        if len(children) < 3 or children[2].name != "div":
            return "", "", ""

        table = children[2].find("table")
        if table is None:
            return "", "", ""
        first_row = next(iter(_direct_rows(table)), None)
        if first_row is None:
            return "", "", ""
        cells = _direct_cells(first_row)
        if len(cells) < 2:
            return "", "", ""

        lines = [_text(d) for d in cells[1].find_all("div", recursive=False)]
        lines += [""] * (3 - len(lines))
        return lines[0], lines[1], lines[2]

    def _find_score_table(self, division_row: Tag) -> Tag | None:
        for row in division_row.find_next_siblings("tr"):
            if "header-division-name" in (row.get("class") or []):
                continue
            for cell in _direct_cells(row):
                table = cell.find("table", recursive=False)
                if table is not None:
                    return table
        return None

    def _parse_caption_labels(self, header_row: Tag) -> list[str]:
        cells = _direct_cells(header_row)[LEADING_SPACER_CELLS:]
        labels = [_text(c) for c in cells]
        if len(labels) >= TRAILING_SUMMARY_CELLS:
            labels = labels[: len(labels) - TRAILING_SUMMARY_CELLS]
        else:
            labels = []
        return labels

    def _parse_row(self, row: Tag) -> ParsedRow:
        cells = _direct_cells(row)
        name = _text(cells[0]) if cells else ""
        captions = [
            _score_text(cell)
            for cell in cells
            if "subcaptionTotal" in (cell.get("class") or [])
        ]
        subtotal = _score_text(cells[-3]) if len(cells) >= 3 else ""
        total = _score_text(cells[-1]) if cells else ""
        return ParsedRow(name=name, captions=captions, subtotal=subtotal, total=total)

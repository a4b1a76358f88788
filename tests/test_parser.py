import math

import pytest

from recap_scraper.exceptions import StructureError
from recap_scraper.models import to_number
from recap_scraper.parsers import RecapParser


@pytest.fixture
def parser() -> RecapParser:
    return RecapParser()


def test_split_sections_one_per_division(recap_html: str) -> None:
    """Each margin-top section of the page becomes one fragment."""
    sections = RecapParser.split_sections(recap_html)

    assert len(sections) == 2
    assert "Percussion Scholastic World" in sections[0]
    assert "Color Guard Scholastic A" in sections[1]


def test_parse_header_fields(parser: RecapParser, recap_html: str) -> None:
    recap = parser.parse_page(recap_html)[0]

    assert recap.event_name == "WGI Dayton Regional"
    assert recap.location == "Dayton, OH"
    assert recap.date == "Saturday, March 15, 2025"
    assert recap.division == "Percussion Scholastic World"


def test_caption_labels_drop_spacers_and_summary(
    parser: RecapParser, recap_html: str
) -> None:
    """The two leading spacer cells and Subtotal/Penalties/Total are not captions."""
    recap = parser.parse_page(recap_html)[0]

    assert recap.caption_labels == [
        "Effect - Music",
        "Effect - Visual",
        "Music",
        "Visual",
    ]


def test_rows_align_with_captions(parser: RecapParser, recap_html: str) -> None:
    """Every parsed row has exactly one caption score per caption label."""
    for recap in parser.parse_page(recap_html):
        assert recap.rows
        for row in recap.rows:
            assert len(row.captions) == len(recap.caption_labels)


def test_row_values(parser: RecapParser, recap_html: str) -> None:
    recap = parser.parse_page(recap_html)[0]

    assert [r.name for r in recap.rows] == [
        "Saratoga HS World",
        "Centerville HS",
        "Dublin Coffman HS",
    ]
    first = recap.rows[0]
    assert first.captions == ["28.50", "18.20", "27.90", "17.60"]
    assert first.subtotal == "92.20"
    assert first.total == "92.20"

    second = recap.rows[1]
    assert second.subtotal == "89.20"
    assert second.total == "89.10"


def test_non_numeric_score_is_kept_as_text(
    parser: RecapParser, recap_html: str
) -> None:
    """A malformed score parses fine and only fails numeric coercion later."""
    row = parser.parse_page(recap_html)[0].rows[2]

    assert row.total == "DNF"
    assert row.captions[2] == "--"
    assert math.isnan(to_number(row.total))


def test_second_division(parser: RecapParser, recap_html: str) -> None:
    recap = parser.parse_page(recap_html)[1]

    assert recap.division == "Color Guard Scholastic A"
    assert recap.caption_labels == ["Equipment", "Movement"]
    assert recap.rows[0].name == "Beavercreek HS"
    assert recap.rows[0].total == "30.00"


def test_missing_division_header_raises(parser: RecapParser) -> None:
    fragment = '<div style="margin-top: 30px;"><table><tr><td>x</td></tr></table></div>'

    with pytest.raises(StructureError) as exc_info:
        parser.parse(fragment)

    assert exc_info.value.error_data["selector"] == "tr.header-division-name"


@pytest.mark.parametrize(
    "division_row",
    [
        '<tr class="header-division-name"><th>Percussion Independent A</th></tr>',
        '<tr class="header-division-name"><td>  </td></tr>',
    ],
)
def test_missing_division_name_raises(parser: RecapParser, division_row: str) -> None:
    fragment = (
        '<div style="margin-top: 30px;"><table>'
        f"{division_row}"
        "<tr><td><table><tr><td>Music</td></tr></table></td></tr>"
        "</table></div>"
    )

    with pytest.raises(StructureError) as exc_info:
        parser.parse(fragment)

    assert exc_info.value.error_data["selector"] == "tr.header-division-name > td"


def test_missing_score_table_raises(parser: RecapParser) -> None:
    fragment = (
        '<div style="margin-top: 30px;"><table>'
        '<tr class="header-division-name"><td>Percussion Independent A</td></tr>'
        "<tr><td>No scores yet</td></tr>"
        "</table></div>"
    )

    with pytest.raises(StructureError) as exc_info:
        parser.parse(fragment)

    assert exc_info.value.error_data["division"] == "Percussion Independent A"


def test_caption_count_mismatch_raises(parser: RecapParser) -> None:
    """A row with fewer caption scores than labels is a structural error."""
    fragment = (
        '<div style="margin-top: 30px;"><table>'
        '<tr class="header-division-name"><td>Percussion Independent A</td></tr>'
        "<tr><td><table>"
        "<tr><td></td><td></td><td>Music</td><td>Visual</td>"
        "<td>Subtotal</td><td>Penalties</td><td>Total</td></tr>"
        "<tr><td>a</td></tr><tr><td>b</td></tr>"
        '<tr><td class="topBorder">Short Row</td><td class="topBorder">1</td>'
        '<td class="subcaptionTotal"><table><tr><td class="score">40</td></tr></table></td>'
        '<td><table><tr><td class="score">40</td></tr></table></td>'
        '<td><table><tr><td class="score">0</td></tr></table></td>'
        '<td><table><tr><td class="score">40</td></tr></table></td></tr>'
        "</table></td></tr>"
        "</table></div>"
    )

    with pytest.raises(StructureError):
        parser.parse(fragment)


def test_header_missing_leaves_fields_empty(parser: RecapParser) -> None:
    """A section without the header block still parses, with no event metadata."""
    fragment = (
        '<div style="margin-top: 30px;"><table>'
        '<tr class="header-division-name"><td>Percussion Independent A</td></tr>'
        "<tr><td><table>"
        "<tr><td></td><td></td><td>Music</td>"
        "<td>Subtotal</td><td>Penalties</td><td>Total</td></tr>"
        "<tr><td>a</td></tr><tr><td>b</td></tr>"
        '<tr><td class="topBorder">Only Group</td><td class="topBorder">1</td>'
        '<td class="subcaptionTotal"><table><tr><td class="score">40</td></tr></table></td>'
        '<td><table><tr><td class="score">40</td></tr></table></td>'
        '<td><table><tr><td class="score">0</td></tr></table></td>'
        '<td><table><tr><td class="score">40</td></tr></table></td></tr>'
        "</table></td></tr>"
        "</table></div>"
    )

    recap = parser.parse(fragment)

    assert recap.event_name is None
    assert recap.date is None
    assert recap.rows[0].captions == ["40"]
    assert recap.rows[0].total == "40"


def test_empty_page_has_no_sections(parser: RecapParser) -> None:
    assert parser.parse_page("<html><body><p>Not published</p></body></html>") == []

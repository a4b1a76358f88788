import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from recap_scraper.main import main


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def manual_file(tmp_path: Path, recap_html: str) -> Path:
    """A manual source listing one locally saved recap page."""
    (tmp_path / "dayton.htm").write_text(recap_html, encoding="utf-8")
    path = tmp_path / "events.yaml"
    path.write_text(
        "events:\n"
        "  - name: WGI Dayton Regional\n"
        "    recap_url: file://dayton.htm\n",
        encoding="utf-8",
    )
    return path


def load_documents(store_dir: Path, collection: str) -> dict:
    with open(store_dir / f"{collection}.json", encoding="utf-8") as f:
        return json.load(f)["documents"]


def test_ingest_and_add_alias(runner: CliRunner, tmp_path: Path, manual_file: Path) -> None:
    store_dir = tmp_path / "store"
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(
            main,
            ["ingest", "--manual", str(manual_file), "--store", str(store_dir), "--pool-size", "1"],
            env={"GEOCODE_API_KEY": ""},
            catch_exceptions=False,
        )

        assert result.exit_code == 0, result.output
        assert "1 events: 1 succeeded" in result.output

        events = list(load_documents(store_dir, "events").values())
        assert len(events) == 1
        assert events[0]["name"] == "WGI Dayton Regional"
        assert events[0]["source"] == "events"
        assert [r["division"] for r in events[0]["recaps"]] == ["Percussion Scholastic World"]

        groups = load_documents(store_dir, "groups")
        assert sorted(g["name"] for g in groups.values()) == [
            "Centerville HS",
            "Dublin Coffman HS",
            "Saratoga HS World",
        ]

        result = runner.invoke(
            main,
            ["add-alias", "Saratoga HS World", "Saratoga HS", "--store", str(store_dir)],
            catch_exceptions=False,
        )

        assert result.exit_code == 0, result.output
        saratoga = next(
            g for g in load_documents(store_dir, "groups").values()
            if g["name"] == "Saratoga HS World"
        )
        assert saratoga["aliases"] == ["Saratoga HS"]
        assert saratoga["aliases_lower"] == ["saratoga hs"]


def test_ingest_exits_non_zero_when_everything_fails(
    runner: CliRunner, tmp_path: Path
) -> None:
    manual = tmp_path / "events.yaml"
    manual.write_text(
        "- name: Missing\n  recap_url: file://does-not-exist.htm\n", encoding="utf-8"
    )

    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(
            main,
            ["ingest", "--manual", str(manual), "--store", str(tmp_path / "store"), "--pool-size", "1"],
            env={"GEOCODE_API_KEY": ""},
        )

    assert result.exit_code == 1
    assert "1 failed" in result.output


def test_ingest_requires_a_source(runner: CliRunner, tmp_path: Path) -> None:
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(main, ["ingest"])

    assert result.exit_code == 2
    assert "No sources configured" in result.output


def test_ingest_rejects_malformed_source(runner: CliRunner, tmp_path: Path) -> None:
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(main, ["ingest", "--source", "WGI"])

    assert result.exit_code == 2
    assert "NAME=SEASON" in result.output


def test_ingest_rejects_bad_settings(runner: CliRunner, tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text("pool_size: 3\nworkers: 4\n", encoding="utf-8")

    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(main, ["ingest", "--config", str(config)])

    assert result.exit_code == 2
    assert "Unknown settings: workers" in result.output


def test_add_alias_unknown_group(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(
        main, ["add-alias", "Nobody", "Nobody HS", "--store", str(tmp_path)]
    )

    assert result.exit_code == 1

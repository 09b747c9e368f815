"""CLI integration tests for the export commands."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from strava_export import __version__
from strava_export.cli import main
from strava_export.models.segment import (
    SegmentCache,
    StarredSegmentCacheEntry,
    save_segment_cache,
)
from strava_export.services import export as export_module
from tests.conftest import FakeSource, make_points


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a configuration file with a segment cache under tmp_path."""
    path = tmp_path / "config.toml"
    path.write_text(
        "[strava]\n"
        'access_token = "token"\n'
        "\n"
        "[export]\n"
        f'segments_cache = "{(tmp_path / "segments.json").as_posix()}"\n'
        "batch_size = 2\n"
    )
    return path


@pytest.fixture
def source(monkeypatch: pytest.MonkeyPatch, make_activity) -> FakeSource:
    """Route the CLI's export service to an in-memory source."""
    fake = FakeSource()
    for i in (1, 2):
        fake.activities.append(
            make_activity(
                activity_id=i,
                name=f"Ride {i}",
                start=datetime(2024, 6, i, 15, tzinfo=timezone.utc),
                gear_id="b1",
            )
        )
        fake.streams[i] = make_points([(37.0, -122.0 + i), (37.1, -122.0 + i)])
        fake.details[i] = make_activity(
            activity_id=i,
            name=f"Ride {i}",
            start=datetime(2024, 6, i, 15, tzinfo=timezone.utc),
            gear_id="b1",
            detailed=True,
        )
    fake.bikes = {"b1": "Road Bike"}

    service_class = export_module.ExportService
    monkeypatch.setattr(
        export_module, "ExportService", lambda config: service_class(config, fake)
    )
    return fake


def run(cli_runner, tmp_path: Path, config_file: Path, *args: str):
    return cli_runner.invoke(
        main, ["-c", str(config_file), "-d", str(tmp_path / "data"), *args]
    )


class TestVersion:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


class TestKml:
    """Tests for strava-export kml command."""

    def test_kml_export(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        """Verify the KML file is written and summarized."""
        output = tmp_path / "rides.kml"

        result = run(cli_runner, tmp_path, config_file, "kml", str(output), "--more")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        assert "Wrote 2 activities and 0 segments" in result.output
        content = output.read_text()
        assert "2024-06-01 - Ride 1" in content
        assert "Moving Time" in content

    def test_kml_json_output(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        output = tmp_path / "rides.kml"

        result = run(cli_runner, tmp_path, config_file, "--json", "kml", str(output))

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["activities"] == 2
        assert data["errors"] == []

    def test_kml_reports_fetch_errors(
        self, cli_runner, tmp_path: Path, config_file: Path, source
    ) -> None:
        from strava_export.errors import FetchError

        source.failures[("streams", 2)] = FetchError("boom")
        output = tmp_path / "rides.kml"

        result = run(cli_runner, tmp_path, config_file, "--json", "kml", str(output))

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["activities"] == 1
        assert data["skipped"] == 1
        assert len(data["errors"]) == 1

    def test_kml_requires_kml_suffix(
        self, cli_runner, tmp_path: Path, config_file: Path, source
    ) -> None:
        result = run(cli_runner, tmp_path, config_file, "kml", str(tmp_path / "rides.gpx"))

        assert result.exit_code == 2
        assert ".kml" in result.output
        assert not source.calls

    def test_no_activities_requires_segments(
        self, cli_runner, tmp_path: Path, config_file: Path, source
    ) -> None:
        result = run(
            cli_runner, tmp_path, config_file, "kml", str(tmp_path / "x.kml"), "--no-activities"
        )

        assert result.exit_code == 2

    def test_segments_only(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        cache = SegmentCache()
        cache.replace([StarredSegmentCacheEntry(7, "Hawk Hill", country="USA", state="CA")])
        save_segment_cache(tmp_path / "segments.json", cache)
        source.segment_streams[7] = make_points([(1, 1), (2, 2)])
        output = tmp_path / "segments.kml"

        result = run(
            cli_runner,
            tmp_path,
            config_file,
            "kml",
            str(output),
            "--segments",
            "nested",
            "--no-activities",
        )

        assert result.exit_code == 0, f"Command failed: {result.output}"
        content = output.read_text()
        assert "Segments for CA, USA" in content
        assert "StravaTrack" not in content

    def test_missing_token(self, cli_runner, tmp_path: Path) -> None:
        """Without a token the command fails before any network access."""
        config_file = tmp_path / "empty.toml"
        config_file.write_text("")

        result = run(cli_runner, tmp_path, config_file, "kml", str(tmp_path / "rides.kml"))

        assert result.exit_code == 2
        assert "access token" in result.output

    def test_unwritable_output(
        self, cli_runner, tmp_path: Path, config_file: Path, source
    ) -> None:
        output = tmp_path / "missing" / "rides.kml"

        result = run(cli_runner, tmp_path, config_file, "kml", str(output))

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestGpx:
    """Tests for strava-export gpx command."""

    def test_gpx_file(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        output = tmp_path / "rides.gpx"

        result = run(cli_runner, tmp_path, config_file, "gpx", str(output))

        assert result.exit_code == 0, f"Command failed: {result.output}"
        content = output.read_text()
        assert content.count("<trk>") == 2
        assert "Activities 2024-06-01 to 2024-06-02" in content

    def test_gpx_folder(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        folder = tmp_path / "tracks"

        result = run(cli_runner, tmp_path, config_file, "--json", "gpx", str(folder))

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert data["files"] == 2
        assert sorted(p.name for p in folder.iterdir()) == [
            "20240601_Ride_1.gpx",
            "20240602_Ride_2.gpx",
        ]

    def test_gpx_rejects_kml_suffix(
        self, cli_runner, tmp_path: Path, config_file: Path, source
    ) -> None:
        result = run(cli_runner, tmp_path, config_file, "gpx", str(tmp_path / "out.kml"))

        assert result.exit_code == 2
        assert "kml command" in result.output
        assert not source.calls
        assert not (tmp_path / "out.kml").exists()


class TestPdf:
    """Tests for strava-export pdf command."""

    def test_bikelog(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        output = tmp_path / "bikelog.xml"

        result = run(cli_runner, tmp_path, config_file, "--json", "pdf", str(output))

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert data["days_written"] == 2
        content = output.read_text()
        assert "<bike>Road Bike</bike>" in content
        assert "Bike: Ride 1" in content


class TestSegments:
    """Tests for strava-export segments command."""

    def test_list_cache(self, cli_runner, tmp_path: Path, config_file: Path) -> None:
        cache = SegmentCache()
        cache.replace([
            StarredSegmentCacheEntry(2, "wall", distance=800),
            StarredSegmentCacheEntry(1, "Hawk Hill", distance=2500, state="CA", country="USA"),
        ])
        save_segment_cache(tmp_path / "segments.json", cache)

        result = run(cli_runner, tmp_path, config_file, "segments")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        output = result.output
        assert "Hawk Hill (2.50 km) CA, USA" in output
        assert output.index("Hawk Hill (") < output.index("wall (0.80 km)")
        assert "2 starred segments" in result.output

    def test_refresh_json(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        source.starred = [StarredSegmentCacheEntry(5, "Hawk Hill", distance=2500)]

        result = run(cli_runner, tmp_path, config_file, "--json", "segments", "--refresh")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert [s["id"] for s in data["segments"]] == [5]
        assert data["segments"][0]["name"] == "Hawk Hill"

    def test_efforts_in_date_range(
        self, cli_runner, tmp_path: Path, config_file: Path, source, make_activity
    ) -> None:
        for i, elapsed in ((1, 425), (2, 398)):
            source.details[i] = make_activity(
                activity_id=i,
                name=f"Ride {i}",
                start=datetime(2024, 6, i, 15, tzinfo=timezone.utc),
                segment_efforts=[{"elapsed_time": elapsed, "segment": {"id": 5, "name": "Hawk Hill"}}],
            )
        cache = SegmentCache()
        cache.replace([StarredSegmentCacheEntry(5, "Hawk Hill", distance=2500)])
        save_segment_cache(tmp_path / "segments.json", cache)

        result = run(
            cli_runner, tmp_path, config_file, "segments", "--after", "2024-05-01", "--before", "2024-07-01"
        )

        assert result.exit_code == 0, f"Command failed: {result.output}"
        output = result.output
        assert "Efforts: 2" in output
        assert "1. 6:38 on 2024-06-02" in output
        assert "2. 7:05 on 2024-06-01" in output
        assert not [c for c in source.calls if c[0] == "streams"]

    def test_efforts_json(
        self, cli_runner, tmp_path: Path, config_file: Path, source, make_activity
    ) -> None:
        source.details[1] = make_activity(
            activity_id=1,
            name="Ride 1",
            start=datetime(2024, 6, 1, 15, tzinfo=timezone.utc),
            segment_efforts=[{"elapsed_time": 300, "segment": {"id": 5, "name": "Hawk Hill"}}],
        )
        cache = SegmentCache()
        cache.replace([StarredSegmentCacheEntry(5, "Hawk Hill")])
        save_segment_cache(tmp_path / "segments.json", cache)

        result = run(cli_runner, tmp_path, config_file, "--json", "segments", "--after", "2024-05-01")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert data["activities_found"] == 2
        (segment,) = data["segments"]
        assert segment["efforts"] == [{"activity_id": 1, "date": "2024-06-01", "elapsed_time": 300}]

    def test_corrupt_cache(self, cli_runner, tmp_path: Path, config_file: Path) -> None:
        (tmp_path / "segments.json").write_text("{not json")

        result = run(cli_runner, tmp_path, config_file, "segments")

        assert result.exit_code == 2
        assert "segments.json" in result.output


class TestAthlete:
    """Tests for strava-export athlete command."""

    def test_profile_and_bikes(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        source.bikes = {"b1": "Road Bike", "b2": "Gravel"}
        config_file.write_text(
            config_file.read_text() + '\n[[export.bikes]]\npattern = "road bike"\nname = "Road"\n'
        )

        result = run(cli_runner, tmp_path, config_file, "athlete")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        lines = result.output.splitlines()
        assert "Name:    Jim Ride" in lines
        assert "Country: United States" in lines
        assert "  Gravel:    b2" in lines
        assert "  Road Bike: b1 Road" in lines
        assert lines.index("  Gravel:    b2") < lines.index("  Road Bike: b1 Road")

    def test_json(self, cli_runner, tmp_path: Path, config_file: Path, source) -> None:
        result = run(cli_runner, tmp_path, config_file, "--json", "athlete")

        assert result.exit_code == 0, f"Command failed: {result.output}"
        data = json.loads(result.stdout)
        assert data["status"] == "success"
        assert data["athlete"]["id"] == 1234
        assert data["bikes"] == [{"id": "b1", "name": "Road Bike", "label": ""}]

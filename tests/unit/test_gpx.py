"""Unit tests for the GPX writer."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import gpxpy
import gpxpy.gpx

from strava_export.models.activity import Activity, Lap
from strava_export.views import ExportOptions, write_geo_export
from strava_export.views.gpx import activity_filename
from tests.conftest import make_points

GPX = "http://www.topografix.com/GPX/1/1"
NS = {"g": GPX}
PDT = timezone(timedelta(hours=-7))


def children(root: ET.Element) -> list[str]:
    return [child.tag.replace(f"{{{GPX}}}", "") for child in root]


def parse(path: Path) -> gpxpy.gpx.GPX:
    with open(path, encoding="utf-8") as f:
        return gpxpy.parse(f)


class TestGpxFile:
    """Tests for a single aggregated GPX file."""

    def test_tracks_and_metadata(self, make_activity, tmp_path: Path) -> None:
        activities = [
            make_activity(activity_id=1, coordinates=make_points([(37.5, -122.25), (37.6, -122.35)])),
            make_activity(activity_id=2, name="Empty"),
            make_activity(
                activity_id=3,
                name="Evening Run",
                type="Run",
                start=datetime(2024, 6, 3, 15, tzinfo=timezone.utc),
                coordinates=make_points([(1.5, 2.5), (1.6, 2.6)]),
            ),
        ]
        path = tmp_path / "all.gpx"

        stats = write_geo_export(path, activities)

        assert stats["activities"] == 2
        assert stats["skipped"] == 1
        root = ET.parse(path).getroot()
        assert root.get("version") == "1.1"
        assert root.get("creator") == "strava-export"
        assert children(root) == ["metadata", "trk", "trk"]

        gpx = parse(path)
        assert gpx.name == "Activities 2024-06-01 to 2024-06-03"
        assert gpx.time == datetime(2024, 6, 1, 8, 0, tzinfo=PDT)
        assert [t.name for t in gpx.tracks] == [
            "2024-06-01T08:00:00-07:00 Morning Ride",
            "2024-06-03T08:00:00-07:00 Evening Run",
        ]
        assert gpx.tracks[1].type == "Run"
        points = gpx.tracks[0].segments[0].points
        assert [(p.latitude, p.longitude) for p in points] == [(37.5, -122.25), (37.6, -122.35)]
        assert points[1].elevation == 101
        assert points[1].time == datetime(2024, 6, 1, 15, 0, 10, tzinfo=timezone.utc)

    def test_timezone_offset_in_times(self, make_activity, tmp_path: Path) -> None:
        local = datetime(2024, 6, 1, 8, 0, tzinfo=ZoneInfo("America/Los_Angeles"))
        activity = make_activity(start_date_local=local, coordinates=make_points([(1, 1), (2, 2)]))
        path = tmp_path / "tz.gpx"

        write_geo_export(path, [activity])

        point = ET.parse(path).getroot().find("g:trk/g:trkseg/g:trkpt", NS)
        assert point.findtext("g:time", namespaces=NS).startswith("2024-06-01T08:00:00-07")
        assert parse(path).tracks[0].segments[0].points[0].time.utcoffset() == timedelta(hours=-7)

    def test_mixed_known_and_unknown_timezones(self, tmp_path: Path) -> None:
        """One activity with a resolvable zone and one without still export together."""
        common = {"type": "Ride", "distance": 1000}
        known = Activity.from_dict({
            **common,
            "id": 1,
            "name": "Known",
            "start_date": "2024-06-01T15:00:00Z",
            "start_date_local": "2024-06-01T08:00:00Z",
            "timezone": "(GMT-08:00) America/Los_Angeles",
        })
        unknown = Activity.from_dict({
            **common,
            "id": 2,
            "name": "Unknown",
            "start_date": "2024-06-02T15:00:00Z",
            "start_date_local": "2024-06-02T17:00:00Z",
            "timezone": "",
        })
        known.coordinates = make_points([(1, 1), (2, 2)])
        unknown.coordinates = make_points([(3, 3), (4, 4)])
        path = tmp_path / "mixed.gpx"

        stats = write_geo_export(path, [unknown, known])

        assert stats["activities"] == 2
        gpx = parse(path)
        assert gpx.name == "Activities 2024-06-01 to 2024-06-02"
        assert gpx.time == datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
        assert unknown.start_date_local.utcoffset() == timedelta(hours=2)
        assert [t.name for t in gpx.tracks] == [
            "2024-06-02T17:00:00+02:00 Unknown",
            "2024-06-01T08:00:00-07:00 Known",
        ]

    def test_waypoints_before_tracks(self, make_activity, tmp_path: Path) -> None:
        activity = make_activity(
            coordinates=make_points([(0.5, i) for i in range(30)]),
            laps=[Lap(1, 0, 100, 1000), Lap(2, 10, 100, 500), Lap(3, 20, 90, 900)],
        )
        path = tmp_path / "laps.gpx"

        stats = write_geo_export(path, [activity], options=ExportOptions(laps=True))

        assert stats["laps"] == 2
        root = ET.parse(path).getroot()
        assert children(root) == ["metadata", "wpt", "wpt", "trk"]
        first, second = root.findall("g:wpt", NS)
        assert children(first) == ["ele", "time", "name", "cmt", "desc", "type"]
        assert float(first.get("lat")) == 0.5
        assert float(first.get("lon")) == 10
        assert first.findtext("g:name", namespaces=NS) == "Lap 1"
        assert first.findtext("g:desc", namespaces=NS) == "1.00 km"
        assert first.findtext("g:type", namespaces=NS) == "Lap"
        assert second.findtext("g:cmt", namespaces=NS) == (
            "Distance: 0.50 km, Elevation: 120.0 m, Delta: +10.0 m, Gradient: 2.0%"
        )

    def test_laps_ignored_for_summary_activity(self, make_activity, tmp_path: Path) -> None:
        activity = make_activity(coordinates=make_points([(1, 1), (2, 2)]))
        path = tmp_path / "laps.gpx"

        stats = write_geo_export(path, [activity], options=ExportOptions(laps=True))

        assert stats["laps"] == 0

    def test_description(self, make_activity, tmp_path: Path) -> None:
        activity = make_activity(coordinates=make_points([(1, 1), (2, 2)]))
        path = tmp_path / "desc.gpx"

        write_geo_export(path, [activity], options=ExportOptions(more=True))

        track = ET.parse(path).getroot().find("g:trk", NS)
        assert children(track) == ["name", "desc", "type", "trkseg"]
        assert track.findtext("g:desc", namespaces=NS).splitlines() == [
            "Distance: 10.5 km",
            "Elevation Gain: 120 m",
            "Moving Time: 0:30",
            "Elapsed Time: 0:33",
        ]

    def test_no_activities(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.gpx"

        stats = write_geo_export(path, [])

        assert stats["files"] == 1
        root = ET.parse(path).getroot()
        assert root.findtext("g:metadata/g:name", namespaces=NS) == "Activities"
        assert root.find("g:trk", NS) is None


class TestGpxFolder:
    """Tests for one GPX file per activity."""

    def test_one_file_per_activity(self, make_activity, tmp_path: Path) -> None:
        activities = [
            make_activity(activity_id=1, name="Morning  Ride", coordinates=make_points([(1, 1), (2, 2)])),
            make_activity(activity_id=2, name="No GPS"),
            make_activity(activity_id=3, name="Morning Ride", coordinates=make_points([(3, 3), (4, 4)])),
        ]
        folder = tmp_path / "gpx"

        stats = write_geo_export(folder, activities)

        assert stats == {"activities": 2, "skipped": 1, "files": 2, "laps": 0}
        assert sorted(p.name for p in folder.iterdir()) == [
            "20240601_Morning_Ride.gpx",
            "20240601_Morning_Ride_3.gpx",
        ]
        root = ET.parse(folder / "20240601_Morning_Ride.gpx").getroot()
        assert root.findtext("g:metadata/g:name", namespaces=NS) == "Morning  Ride"
        assert len(root.findall("g:trk", NS)) == 1

    def test_filename(self, make_activity) -> None:
        activity = make_activity(name="Up/Down and back")
        assert activity_filename(activity) == "20240601_Up_Down_and_back.gpx"

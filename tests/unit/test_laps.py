"""Unit tests for lap waypoint correlation."""

from __future__ import annotations

import pytest

from strava_export.errors import PreconditionError
from strava_export.models.activity import Lap, TrackPoint
from strava_export.services.laps import correlate_laps, find_point_at_time
from strava_export.services.track_filter import BlackoutZone, filter_track_points
from tests.conftest import make_points


def lap(index: int, elapsed: float, distance: float, start_index: int = 0) -> Lap:
    return Lap(index=index, start_index=start_index, elapsed_time=elapsed, distance=distance)


class TestFindPointAtTime:
    """Tests for time-based point lookup."""

    def test_closest_time(self) -> None:
        points = make_points([(0, i) for i in range(10)])
        assert find_point_at_time(points, 34, 100).lng == 3

    def test_tie_goes_to_first(self) -> None:
        points = make_points([(0, i) for i in range(10)])
        assert find_point_at_time(points, 35, 100).lng == 3

    def test_fallback_without_times(self) -> None:
        points = [TrackPoint(0, i) for i in range(10)]
        assert find_point_at_time(points, 50, 100).lng == 5

    def test_fallback_clamped(self) -> None:
        points = [TrackPoint(0, i) for i in range(10)]
        assert find_point_at_time(points, 500, 100).lng == 9

    def test_empty(self) -> None:
        assert find_point_at_time([], 5, 10) is None


class TestCorrelateLaps:
    """Tests for lap waypoints."""

    def test_final_lap_skipped(self, make_activity) -> None:
        """Three laps give two waypoints."""
        activity = make_activity(
            coordinates=make_points([(0, i) for i in range(30)]),
            laps=[lap(1, 100, 1000), lap(2, 100, 1000), lap(3, 90, 900)],
        )

        waypoints = correlate_laps(activity)

        assert [w.lap_number for w in waypoints] == [1, 2]
        assert [w.point.time for w in waypoints] == [100, 200]

    def test_single_lap_has_no_waypoints(self, make_activity) -> None:
        activity = make_activity(
            coordinates=make_points([(0, i) for i in range(30)]),
            laps=[lap(1, 290, 2900)],
        )
        assert correlate_laps(activity) == []

    def test_uses_time_not_stale_start_index(self, make_activity) -> None:
        """Lap boundaries stay at the right place after filtering."""
        raw = make_points([(1, i) if i < 5 else (0, i) for i in range(20)])
        filtered = filter_track_points(raw, [BlackoutZone((0.5, -1), (2, 4.5))])
        activity = make_activity(
            coordinates=filtered,
            laps=[lap(1, 100, 1000, start_index=0), lap(2, 100, 1000, start_index=10)],
        )

        waypoints = correlate_laps(activity)

        assert len(waypoints) == 1
        assert waypoints[0].point.time == 100
        assert waypoints[0].point.lng == 10

    def test_waypoint_metrics(self, make_activity) -> None:
        activity = make_activity(
            coordinates=make_points([(0, i) for i in range(40)]),
            laps=[lap(1, 100, 1234), lap(2, 100, 500), lap(3, 100, 0), lap(4, 90, 10)],
        )

        first, second, third = correlate_laps(activity)

        assert first.distance_km == 1.23
        assert first.elevation == 110
        assert first.elevation_delta is None
        assert first.gradient is None
        assert second.elevation_delta == 10
        assert second.gradient == pytest.approx(2.0)
        assert third.elevation_delta == 10
        assert third.gradient is None

    def test_comment(self, make_activity) -> None:
        activity = make_activity(
            coordinates=make_points([(0, i) for i in range(30)]),
            laps=[lap(1, 100, 1000), lap(2, 100, 500), lap(3, 10, 10)],
        )

        first, second = correlate_laps(activity)

        assert first.comment() == "Distance: 1.00 km, Elevation: 110.0 m"
        assert second.comment() == (
            "Distance: 0.50 km, Elevation: 120.0 m, Delta: +10.0 m, Gradient: 2.0%"
        )

    def test_summary_activity_rejected(self, make_activity) -> None:
        activity = make_activity(coordinates=make_points([(0, 0), (0, 1)]))
        with pytest.raises(PreconditionError):
            correlate_laps(activity)

    def test_no_coordinates(self, make_activity) -> None:
        activity = make_activity(laps=[lap(1, 100, 1000), lap(2, 100, 1000)])
        assert correlate_laps(activity) == []

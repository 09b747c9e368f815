"""Shared test fixtures for strava-export tests."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from strava_export.config import Config
from strava_export.errors import FetchError
from strava_export.models.activity import Activity, DetailedActivity, Lap, TrackPoint
from strava_export.models.segment import StarredSegmentCacheEntry

START = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)


def make_points(coords: list[tuple[float, float]], step: float = 10.0) -> list[TrackPoint]:
    """Build timed track points, one every ``step`` seconds, rising 1 m each."""
    return [
        TrackPoint(lat=lat, lng=lng, altitude=100.0 + i, time=i * step)
        for i, (lat, lng) in enumerate(coords)
    ]


@pytest.fixture
def make_activity() -> Callable[..., Activity]:
    """Factory for summary and detailed activities."""

    def factory(
        activity_id: int = 1,
        name: str = "Morning Ride",
        type: str = "Ride",
        start: datetime = START,
        distance: float = 10500.0,
        detailed: bool = False,
        laps: list[Lap] | None = None,
        segment_efforts: list[dict[str, Any]] | None = None,
        coordinates: list[TrackPoint] | None = None,
        **kwargs: Any,
    ) -> Activity:
        fields: dict[str, Any] = {
            "id": activity_id,
            "name": name,
            "type": type,
            "start_date": start,
            "start_date_local": start.astimezone(timezone(timedelta(hours=-7))),
            "distance": distance,
            "moving_time": 1800.0,
            "elapsed_time": 2000.0,
            "total_elevation_gain": 120.4,
            "coordinates": list(coordinates or []),
        }
        fields.update(kwargs)
        if detailed or laps is not None or segment_efforts is not None:
            return DetailedActivity(
                **fields,
                laps=list(laps or []),
                segment_efforts=list(segment_efforts or []),
            )
        return Activity(**fields)

    return factory


class FakeSource:
    """In-memory activity source with optional per-item failures."""

    def __init__(self) -> None:
        self.activities: list[Activity] = []
        self.details: dict[int, DetailedActivity] = {}
        self.streams: dict[int, list[TrackPoint]] = {}
        self.starred: list[StarredSegmentCacheEntry] = []
        self.segment_streams: dict[int, list[TrackPoint]] = {}
        self.bikes: dict[str, str] = {}
        self.profile: dict[str, Any] = {
            "id": 1234,
            "firstname": "Jim",
            "lastname": "Ride",
            "city": "Boulder",
            "state": "Colorado",
            "country": "United States",
        }
        self.failures: dict[tuple[str, int], Exception] = {}
        self.delays: dict[tuple[str, int], threading.Event] = {}
        self.calls: list[tuple[str, int]] = []
        self._lock = threading.Lock()

    def _call(self, kind: str, item_id: int) -> None:
        with self._lock:
            self.calls.append((kind, item_id))
        gate = self.delays.get((kind, item_id))
        if gate is not None:
            gate.wait(timeout=5)
        error = self.failures.get((kind, item_id))
        if error is not None:
            raise error

    def get_activities(
        self,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
    ) -> list[Activity]:
        result = [copy.deepcopy(a) for a in self.activities]
        return result[:limit] if limit else result

    def get_detailed_activity(self, activity_id: int) -> DetailedActivity:
        self._call("detail", activity_id)
        if activity_id not in self.details:
            raise FetchError(f"No detail for {activity_id}")
        return copy.deepcopy(self.details[activity_id])

    def get_activity_streams(self, activity_id: int) -> list[TrackPoint]:
        self._call("streams", activity_id)
        return list(self.streams.get(activity_id, []))

    def get_starred_segments(self) -> list[StarredSegmentCacheEntry]:
        return list(self.starred)

    def get_segment_coordinates(self, segment_id: int) -> list[TrackPoint]:
        self._call("segment", segment_id)
        return list(self.segment_streams.get(segment_id, []))

    def get_athlete_bikes(self) -> dict[str, str]:
        return dict(self.bikes)

    def get_athlete_profile(self) -> dict[str, Any]:
        return {**self.profile, "bikes": dict(self.bikes)}


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Configuration with data and segment cache under tmp_path."""
    config = Config()
    config.data.directory = tmp_path / "data"
    config.export.segments_cache = tmp_path / "segments.json"
    config.config_path = tmp_path / "config.toml"
    return config


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()

"""Activity model for strava-export.

Activities come in two variants. ``Activity`` is the summary returned by the
activity list endpoint. ``DetailedActivity`` is fetched per activity and
additionally carries laps, raw segment efforts and the free-text description.
Lap and effort operations accept only the detailed variant.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

RIDE_TYPES = frozenset({"Ride", "EBikeRide", "VirtualRide", "GravelRide", "MountainBikeRide"})

# Activity types that are recorded without a meaningful route
NO_GEOMETRY_TYPES = frozenset({"Workout", "Yoga", "WeightTraining"})

_TZ_NAME = re.compile(r"([A-Za-z_]+(?:/[A-Za-z0-9_+\-]+)+|UTC)\s*$")


@dataclass(frozen=True)
class TrackPoint:
    """A single point of an activity or segment stream.

    ``time`` is the offset in seconds from the activity start.
    """

    lat: float
    lng: float
    altitude: float | None = None
    time: float | None = None


@dataclass(frozen=True)
class Lap:
    """A lap of a detailed activity.

    ``start_index`` refers to the unfiltered stream and is kept only for
    reference; it is never used to look up coordinates.
    """

    index: int
    start_index: int
    elapsed_time: float
    distance: float

    @classmethod
    def from_dict(cls, data: dict[str, Any], position: int = 0) -> Lap:
        """Create a Lap from a Strava lap dictionary."""
        return cls(
            index=int(data.get("lap_index", position + 1)),
            start_index=int(data.get("start_index", 0) or 0),
            elapsed_time=float(data.get("elapsed_time", 0) or 0),
            distance=float(data.get("distance", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class AttachedEffort:
    """A starred segment effort attached to an activity."""

    segment_id: int
    name: str
    elapsed_time: float
    moving_time: float
    distance: float


def parse_timezone(value: Any) -> ZoneInfo | None:
    """Resolve a Strava timezone such as ``(GMT-08:00) America/Los_Angeles``.

    Returns:
        ZoneInfo, or None when the zone cannot be resolved.
    """
    if value is None:
        return None
    if isinstance(value, ZoneInfo):
        return value
    match = _TZ_NAME.search(str(value).strip())
    if not match:
        return None
    try:
        return ZoneInfo(match.group(1))
    except (ZoneInfoNotFoundError, ValueError):
        return None


def as_utc(value: datetime | None) -> datetime | None:
    """Treat a naive datetime as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def fixed_offset(wall: datetime, start_date: datetime) -> timezone:
    """Offset implied by a wall-clock start and the matching UTC start."""
    utc_wall = start_date.astimezone(timezone.utc).replace(tzinfo=None)
    minutes = round((wall - utc_wall).total_seconds() / 60)
    if minutes == 0 or abs(minutes) >= 24 * 60:
        return timezone.utc
    return timezone(timedelta(minutes=minutes))


def localize(
    start_date: datetime | None,
    start_date_local: datetime | None,
    tz_value: Any,
) -> datetime | None:
    """Build a timezone-aware local start time.

    Strava reports ``start_date_local`` as a wall-clock time with a
    misleading ``Z`` suffix. When the activity timezone is known, the UTC
    start is converted into it. Otherwise the wall-clock value gets the
    fixed offset between it and the UTC start, or UTC when there is no UTC
    start to compare with.
    """
    start_date = as_utc(start_date)
    zone = parse_timezone(tz_value)
    if zone is not None and start_date is not None:
        return start_date.astimezone(zone)
    if start_date_local is None:
        return start_date
    wall = start_date_local.replace(tzinfo=None)
    if zone is not None:
        return wall.replace(tzinfo=zone)
    if start_date is not None:
        return wall.replace(tzinfo=fixed_offset(wall, start_date))
    return wall.replace(tzinfo=timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _seconds(value: Any) -> float:
    """Normalize a duration given as seconds or a timedelta."""
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    return float(value)


@dataclass
class Activity:
    """Summary representation of a Strava activity."""

    id: int
    name: str
    type: str
    start_date: datetime
    start_date_local: datetime
    distance: float = 0.0
    moving_time: float = 0.0
    elapsed_time: float = 0.0
    total_elevation_gain: float = 0.0
    commute: bool = False
    gear_id: str | None = None
    timezone: str = ""
    coordinates: list[TrackPoint] = field(default_factory=list)
    segments: list[AttachedEffort] = field(default_factory=list)

    is_detailed = False

    def __str__(self) -> str:
        return f"{self.start_date_local.date().isoformat()}, {self.type} {self.distance_km()} km, {self.name}"

    def distance_km(self) -> float:
        """Distance in kilometres rounded to two decimals."""
        return round(self.distance / 10) / 100

    def is_ride(self) -> bool:
        return self.type in RIDE_TYPES

    def has_geometry(self) -> bool:
        """True when the activity has a route worth drawing."""
        return self.type not in NO_GEOMETRY_TYPES and len(self.coordinates) > 0

    def local_time_at(self, offset: float) -> datetime:
        """Local timestamp ``offset`` seconds after the activity start."""
        return self.start_date_local + timedelta(seconds=offset)

    @staticmethod
    def _common_fields(data: dict[str, Any]) -> dict[str, Any]:
        start_date = as_utc(_parse_datetime(data.get("start_date")))
        start_date_local = _parse_datetime(data.get("start_date_local"))
        tz_value = data.get("timezone", "")
        local = localize(start_date, start_date_local, tz_value)
        if start_date is None:
            start_date = local
        return {
            "id": int(data["id"]),
            "name": data.get("name") or "Untitled",
            "type": str(data.get("type") or data.get("sport_type") or "Workout"),
            "start_date": start_date,
            "start_date_local": local,
            "distance": float(data.get("distance") or 0.0),
            "moving_time": _seconds(data.get("moving_time")),
            "elapsed_time": _seconds(data.get("elapsed_time")),
            "total_elevation_gain": float(data.get("total_elevation_gain") or 0.0),
            "commute": bool(data.get("commute", False)),
            "gear_id": data.get("gear_id"),
            "timezone": str(tz_value or ""),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Activity:
        """Create an Activity from a Strava JSON dictionary.

        Dictionaries carrying ``laps`` or ``segment_efforts`` produce a
        DetailedActivity.

        Args:
            data: Dictionary with activity data.

        Returns:
            Activity or DetailedActivity instance.
        """
        if "laps" in data or "segment_efforts" in data:
            return DetailedActivity.from_dict(data)
        return cls(**cls._common_fields(data))


@dataclass
class DetailedActivity(Activity):
    """Detailed representation of a Strava activity."""

    laps: list[Lap] = field(default_factory=list)
    segment_efforts: list[dict[str, Any]] = field(default_factory=list)
    description: str | None = None
    private_note: str | None = None

    is_detailed = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DetailedActivity:
        """Create a DetailedActivity from a Strava JSON dictionary."""
        return cls(
            **cls._common_fields(data),
            laps=[Lap.from_dict(lap, i) for i, lap in enumerate(data.get("laps") or [])],
            segment_efforts=list(data.get("segment_efforts") or []),
            description=data.get("description"),
            private_note=data.get("private_note"),
        )

    @classmethod
    def from_summary(cls, summary: Activity, detail: DetailedActivity) -> DetailedActivity:
        """Upgrade a summary, keeping any coordinates already fetched for it."""
        detail.coordinates = summary.coordinates or detail.coordinates
        detail.segments = summary.segments or detail.segments
        return detail

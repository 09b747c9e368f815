"""Lap waypoint correlation.

Lap boundaries are located on the filtered track by elapsed time. The raw
``start_index`` of a lap refers to the unfiltered stream and is stale once
blackout or duplicate points have been removed.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from strava_export.errors import PreconditionError
from strava_export.models.activity import Activity, DetailedActivity, TrackPoint


@dataclass(frozen=True)
class LapWaypoint:
    """Marker at the point where a lap button was pressed."""

    lap_number: int
    point: TrackPoint
    distance_km: float
    elevation: float
    elevation_delta: float | None = None
    gradient: float | None = None

    def comment(self) -> str:
        text = f"Distance: {self.distance_km:.2f} km, Elevation: {self.elevation:.1f} m"
        if self.elevation_delta is not None:
            sign = "+" if self.elevation_delta > 0 else ""
            text += f", Delta: {sign}{self.elevation_delta:.1f} m"
        if self.gradient is not None:
            text += f", Gradient: {self.gradient:.1f}%"
        return text


def find_point_at_time(
    points: Sequence[TrackPoint], elapsed: float, total_elapsed: float
) -> TrackPoint | None:
    """Find the point closest in time to ``elapsed`` seconds.

    Ties go to the earliest point. Without any timed points, the position is
    estimated from the share of ``total_elapsed``.
    """
    if not points:
        return None

    closest: TrackPoint | None = None
    closest_diff = math.inf
    for pt in points:
        if pt.time is None:
            continue
        diff = abs(pt.time - elapsed)
        if diff < closest_diff:
            closest, closest_diff = pt, diff
    if closest is not None:
        return closest

    ratio = elapsed / total_elapsed if total_elapsed > 0 else 1.0
    index = max(0, math.floor(ratio * len(points)))
    return points[min(index, len(points) - 1)]


def correlate_laps(activity: Activity) -> list[LapWaypoint]:
    """Build waypoints for every lap but the last.

    Args:
        activity: Detailed activity whose coordinates are already filtered.

    Returns:
        Waypoints in lap order.

    Raises:
        PreconditionError: If the activity is a summary activity.
    """
    if not isinstance(activity, DetailedActivity):
        raise PreconditionError(f"Laps require a detailed activity: {activity}")

    laps = activity.laps
    waypoints: list[LapWaypoint] = []
    if len(laps) < 2 or not activity.coordinates:
        return waypoints

    cumulative = 0.0
    prev_elevation: float | None = None
    for number, lap in enumerate(laps[:-1], 1):
        cumulative += lap.elapsed_time
        point = find_point_at_time(activity.coordinates, cumulative, activity.elapsed_time)
        if point is None:
            continue

        elevation = point.altitude if point.altitude is not None else 0.0
        delta: float | None = None
        gradient: float | None = None
        if prev_elevation is not None:
            delta = elevation - prev_elevation
            if lap.distance > 0:
                gradient = delta / lap.distance * 100

        waypoints.append(
            LapWaypoint(
                lap_number=number,
                point=point,
                distance_km=round(lap.distance / 1000, 2),
                elevation=elevation,
                elevation_delta=delta,
                gradient=gradient,
            )
        )
        prev_elevation = elevation

    return waypoints

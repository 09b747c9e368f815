"""Track point filtering: blackout zones and redundant points."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from strava_export.models.activity import TrackPoint

logger = logging.getLogger("strava_export.filter")


@dataclass(frozen=True)
class BlackoutZone:
    """Rectangular lat/lng region whose points are hidden from exports.

    Corners may be given in either diagonal order.
    """

    corner_a: tuple[float, float]
    corner_b: tuple[float, float]

    @classmethod
    def from_value(cls, value: Any) -> BlackoutZone:
        """Create a zone from the config form ``[[lat, lng], [lat, lng]]``.

        Raises:
            ValueError: If the value is not two lat/lng pairs.
        """
        if isinstance(value, BlackoutZone):
            return value
        try:
            (lat1, lng1), (lat2, lng2) = value
            return cls((float(lat1), float(lng1)), (float(lat2), float(lng2)))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Blackout zone must be [[lat, lng], [lat, lng]], got {value!r}") from e

    def contains(self, lat: float, lng: float) -> bool:
        (lat1, lng1), (lat2, lng2) = self.corner_a, self.corner_b
        return min(lat1, lat2) <= lat <= max(lat1, lat2) and min(lng1, lng2) <= lng <= max(lng1, lng2)


def in_blackout(point: TrackPoint, zones: Iterable[BlackoutZone]) -> bool:
    return any(zone.contains(point.lat, point.lng) for zone in zones)


def remove_blackout_points(
    points: Sequence[TrackPoint], zones: Sequence[BlackoutZone]
) -> list[TrackPoint]:
    if not zones:
        return list(points)
    return [pt for pt in points if not in_blackout(pt, zones)]


def remove_duplicate_points(points: Sequence[TrackPoint]) -> list[TrackPoint]:
    """Drop interior points whose lat/lng equals both neighbours.

    Neighbours are taken from the input sequence, so a run of identical
    points keeps its first and last members. The first and last points of
    the sequence are always kept.
    """
    n = len(points)
    if n < 3:
        return list(points)
    result = [points[0]]
    for i in range(1, n - 1):
        pt, prev, nxt = points[i], points[i - 1], points[i + 1]
        same_as_prev = pt.lat == prev.lat and pt.lng == prev.lng
        same_as_next = pt.lat == nxt.lat and pt.lng == nxt.lng
        if not (same_as_prev and same_as_next):
            result.append(pt)
    result.append(points[-1])
    return result


def filter_track_points(
    points: Sequence[TrackPoint],
    blackout_zones: Sequence[BlackoutZone] | None = None,
    dedup: bool = True,
) -> list[TrackPoint]:
    """Remove blackout-zone points, then redundant duplicate points.

    Args:
        points: Chronologically ordered track points.
        blackout_zones: Regions to hide.
        dedup: Remove interior points identical to both neighbours.

    Returns:
        New list of points, in the original order.
    """
    result = remove_blackout_points(points, blackout_zones or ())
    blackout_removed = len(points) - len(result)
    if dedup:
        before = len(result)
        result = remove_duplicate_points(result)
        dedup_removed = before - len(result)
    else:
        dedup_removed = 0
    if blackout_removed or dedup_removed:
        logger.debug(
            "Filtered %d points in blackout zones and %d duplicate points",
            blackout_removed,
            dedup_removed,
        )
    return result

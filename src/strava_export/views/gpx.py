"""GPX 1.1 writer.

A path ending in ``.gpx`` receives one document holding every activity.
Any other path is treated as a directory that receives one document per
activity, named ``YYYYMMDD_Activity_Name.gpx``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

import gpxpy.gpx

from strava_export.errors import WriteError
from strava_export.models.activity import Activity, TrackPoint
from strava_export.services.laps import correlate_laps
from strava_export.views.writer import TrackWriter

logger = logging.getLogger("strava_export.gpx")

CREATOR = "strava-export"
GPX_VERSION = "1.1"

_UNSAFE_FILENAME = re.compile(r"[\s/\\]+")


def is_gpx_file(path: Path) -> bool:
    return path.suffix.lower() == ".gpx"


def activity_filename(activity: Activity) -> str:
    """File name for an activity in folder mode."""
    name = _UNSAFE_FILENAME.sub("_", activity.name.strip()) or str(activity.id)
    return f"{activity.start_date_local.strftime('%Y%m%d')}_{name}.gpx"


def _point_time(activity: Activity, point: TrackPoint) -> datetime | None:
    if point.time is None:
        return None
    return activity.local_time_at(point.time)


class GpxWriter(TrackWriter):
    """Write activities as GPX tracks with optional lap waypoints."""

    def write(self, path: Path, activities: Sequence[Activity]) -> dict[str, int]:
        """Write a single GPX file or a folder of GPX files.

        Args:
            path: ``.gpx`` file or output directory.
            activities: Activities with filtered coordinates.

        Returns:
            Counts of written and skipped activities, files and waypoints.

        Raises:
            WriteError: If a file cannot be written.
        """
        if is_gpx_file(path):
            return self._write_file(path, activities)
        return self._write_folder(path, activities)

    def _write_file(self, path: Path, activities: Sequence[Activity]) -> dict[str, int]:
        drawn = [a for a in activities if a.has_geometry()]
        stats = {
            "activities": len(drawn),
            "skipped": len(activities) - len(drawn),
            "files": 1,
            "laps": 0,
        }
        if drawn:
            first = min(drawn, key=lambda a: a.start_date)
            last = max(drawn, key=lambda a: a.start_date)
            gpx = self._document(
                f"Activities {first.start_date_local.date().isoformat()} "
                f"to {last.start_date_local.date().isoformat()}",
                first.start_date_local,
            )
        else:
            gpx = self._document("Activities", None)

        for activity in drawn:
            if self.options.laps:
                stats["laps"] += self._add_waypoints(gpx, activity)
            gpx.tracks.append(self._track(activity))
            logger.debug("Added %d track points for %s", len(activity.coordinates), activity)
        self._save(path, gpx)

        logger.info(
            "Wrote %d tracks and %d waypoints to %s", stats["activities"], stats["laps"], path
        )
        if stats["skipped"]:
            logger.info("Skipped %d activities without coordinates", stats["skipped"])
        return stats

    def _write_folder(self, folder: Path, activities: Sequence[Activity]) -> dict[str, int]:
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Cannot create output folder {folder}: {e}") from e

        logger.info("Generating GPX files in %s", folder)
        stats = {"activities": 0, "skipped": 0, "files": 0, "laps": 0}
        used: set[str] = set()
        for activity in activities:
            if not activity.has_geometry():
                logger.debug("No coordinates for %s", activity)
                stats["skipped"] += 1
                continue

            filename = activity_filename(activity)
            if filename in used:
                filename = f"{filename[:-4]}_{activity.id}.gpx"
            used.add(filename)
            path = folder / filename

            gpx = self._document(activity.name, activity.start_date_local)
            laps = self._add_waypoints(gpx, activity) if self.options.laps else 0
            gpx.tracks.append(self._track(activity))
            self._save(path, gpx)

            logger.debug(
                "Wrote %d track points and %d waypoints to %s",
                len(activity.coordinates),
                laps,
                path,
            )
            stats["activities"] += 1
            stats["files"] += 1
            stats["laps"] += laps

        logger.info("Generated %d GPX files in %s", stats["files"], folder)
        if stats["skipped"]:
            logger.info("Skipped %d activities without coordinates", stats["skipped"])
        return stats

    @staticmethod
    def _document(title: str, time: datetime | None) -> gpxpy.gpx.GPX:
        gpx = gpxpy.gpx.GPX()
        gpx.creator = CREATOR
        gpx.name = title
        gpx.time = time
        return gpx

    def _save(self, path: Path, gpx: gpxpy.gpx.GPX) -> None:
        """Serialize one document and write it to ``path``."""
        self._open(path)
        try:
            self.writeln(0, gpx.to_xml(version=GPX_VERSION))
            self.flush()
            self._close()
        except OSError as e:
            raise self._abort(path, e) from e

    def _track(self, activity: Activity) -> gpxpy.gpx.GPXTrack:
        track = gpxpy.gpx.GPXTrack(
            name=f"{activity.start_date_local.isoformat(timespec='seconds')} {activity.name}"
        )
        if self.options.more or self.options.efforts:
            desc = "\n".join(self.description_lines(activity))
            if desc:
                track.description = desc
        track.type = activity.type

        segment = gpxpy.gpx.GPXTrackSegment()
        for point in activity.coordinates:
            segment.points.append(
                gpxpy.gpx.GPXTrackPoint(
                    latitude=point.lat,
                    longitude=point.lng,
                    elevation=point.altitude,
                    time=_point_time(activity, point),
                )
            )
        track.segments.append(segment)
        return track

    def _add_waypoints(self, gpx: gpxpy.gpx.GPX, activity: Activity) -> int:
        """Add lap waypoints ahead of the tracks; GPX lists ``wpt`` before ``trk``."""
        if not activity.is_detailed:
            return 0
        waypoints = correlate_laps(activity)
        for waypoint in waypoints:
            point = waypoint.point
            gpx.waypoints.append(
                gpxpy.gpx.GPXWaypoint(
                    latitude=point.lat,
                    longitude=point.lng,
                    elevation=point.altitude,
                    time=_point_time(activity, point),
                    name=f"Lap {waypoint.lap_number}",
                    comment=waypoint.comment(),
                    description=f"{waypoint.distance_km:.2f} km",
                    type="Lap",
                )
            )
        return len(waypoints)

"""Export orchestration service for strava-export.

Runs the export as a sequence of phases that never overlap: list
activities, fetch details, fetch coordinates, filter, attach efforts, then
write. Upstream fetches within a phase run in bounded batches on a thread
pool; everything else runs on the calling thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from strava_export.config import Config
from strava_export.errors import FetchError, RateLimitError
from strava_export.models.activity import NO_GEOMETRY_TYPES, Activity, DetailedActivity
from strava_export.models.segment import (
    SegmentCache,
    SegmentData,
    load_segment_cache,
    save_segment_cache,
)
from strava_export.services.bikelog import BikeDef, aggregate_days, find_bike_def, write_bikelog
from strava_export.services.segments import attach_starred_efforts
from strava_export.services.track_filter import BlackoutZone, filter_track_points
from strava_export.views import ExportOptions, write_geo_export
from strava_export.views.styles import build_line_styles

logger = logging.getLogger("strava_export.export")

T = TypeVar("T")
R = TypeVar("R")

# Seconds between checks of the cancel signal while a batch is running
POLL_INTERVAL = 0.1


def date_label(after: datetime | None, before: datetime | None) -> str:
    """Describe a date range for folder names."""
    start = after.date().isoformat() if after else ""
    end = before.date().isoformat() if before else ""
    if start and end:
        return f"{start} to {end}"
    if start:
        return f"from {start}"
    if end:
        return f"until {end}"
    return ""


@dataclass
class FetchRun:
    """Shared stop state of the fetch phases of one export run."""

    deadline: float | None = None
    cancel: threading.Event | None = None
    rate_limited: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    def stop_reason(self) -> str | None:
        if self.rate_limited:
            return "rate limit exceeded"
        if self.cancel is not None and self.cancel.is_set():
            return "cancelled"
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return "deadline exceeded"
        return None


class ExportService:
    """Service for exporting Strava activities to KML, GPX and bikelog XML."""

    def __init__(self, config: Config, source: Any | None = None) -> None:
        """Initialize the export service.

        Args:
            config: Application configuration.
            source: Activity source. Defaults to a StravaClient built from
                the configuration.
        """
        self.config = config
        if source is None:
            from strava_export.services.strava import StravaClient

            source = StravaClient(config)
        self.source = source
        self.batch_size = max(1, int(config.export.batch_size))
        self.styles = build_line_styles(config.export.line_styles)
        self.blackout_zones = self._blackout_zones(config.export.blackout_zones)
        self.bike_defs = self._bike_defs(config.export.bikes)

    @staticmethod
    def _blackout_zones(values: Sequence[Any]) -> list[BlackoutZone]:
        zones = []
        for value in values:
            try:
                zones.append(BlackoutZone.from_value(value))
            except ValueError as e:
                logger.warning("Ignoring blackout zone: %s", e)
        return zones

    @staticmethod
    def _bike_defs(values: Sequence[Any]) -> list[BikeDef]:
        defs = []
        for value in values:
            try:
                defs.append(BikeDef.from_dict(value))
            except (KeyError, TypeError) as e:
                logger.warning("Ignoring bike definition %r: %s", value, e)
        return defs

    def load_segment_cache(self) -> SegmentCache:
        return load_segment_cache(Path(self.config.export.segments_cache).expanduser())

    def refresh_segments(self) -> dict[str, Any]:
        """Fetch the starred segment list and rewrite the segment cache.

        Returns:
            Dictionary with the number of segments and the cache path.
        """
        path = Path(self.config.export.segments_cache).expanduser()
        cache = load_segment_cache(path)
        cache.replace(self.source.get_starred_segments())
        save_segment_cache(path, cache)
        return {"segments": len(cache), "cache": str(path)}

    def _fetch_all(
        self,
        items: Sequence[T],
        fetch: Callable[[T], R],
        what: str,
        run: FetchRun,
    ) -> list[R | None]:
        """Fetch one result per item in bounded parallel batches.

        Results are placed in a slot per item index. Items whose fetch failed
        or was abandoned keep a None slot.
        """
        results: list[R | None] = [None] * len(items)
        abandoned = 0
        reason: str | None = None

        for start in range(0, len(items), self.batch_size):
            reason = run.stop_reason()
            if reason:
                abandoned += len(items) - start
                break

            batch = range(start, min(start + self.batch_size, len(items)))
            pool = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="fetch")
            try:
                pending: dict[Future[R], int] = {pool.submit(fetch, items[i]): i for i in batch}
                while pending:
                    done, _ = wait(pending, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                    for future in done:
                        index = pending.pop(future)
                        try:
                            results[index] = future.result()
                        except RateLimitError as e:
                            logger.warning("Rate limit exceeded, stopping %s fetches: %s", what, e)
                            run.rate_limited = True
                            run.errors.append(
                                {"phase": what, "item": str(items[index]), "error": str(e)}
                            )
                        except FetchError as e:
                            logger.warning("Failed to fetch %s for %s: %s", what, items[index], e)
                            run.errors.append(
                                {"phase": what, "item": str(items[index]), "error": str(e)}
                            )
                    reason = run.stop_reason()
                    if reason and pending:
                        for future in pending:
                            future.cancel()
                        abandoned += len(pending)
                        pending.clear()
            finally:
                pool.shutdown(wait=False, cancel_futures=True)
            if reason:
                abandoned += len(items) - batch.stop
                break

        if abandoned and reason and not run.rate_limited:
            error = FetchError(f"Abandoned {abandoned} of {len(items)} {what} fetches: {reason}")
            logger.warning("%s", error)
            run.errors.append({"phase": what, "error": str(error)})
        elif abandoned:
            logger.warning("Skipped %d %s fetches after rate limit", abandoned, what)
        return results

    def collect(
        self,
        run: FetchRun,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
        details: bool = False,
        coordinates: bool = True,
        segment_cache: SegmentCache | None = None,
    ) -> list[Activity]:
        """Fetch and prepare activities.

        Args:
            run: Stop state and error list for this run.
            after: Only activities after this time.
            before: Only activities before this time.
            limit: Maximum number of activities.
            details: Upgrade activities to their detailed variant.
            coordinates: Fetch and filter coordinate streams.
            segment_cache: Starred segments to attach efforts for.

        Returns:
            Activities in chronological order.
        """
        activities = self.source.get_activities(after=after, before=before, limit=limit)
        activities = sorted(activities, key=lambda a: a.start_date)
        logger.info("Found %d activities", len(activities))

        if details and activities:
            logger.info("Fetching details for %d activities", len(activities))
            detailed = self._fetch_all(
                activities,
                lambda a: self.source.get_detailed_activity(a.id),
                "activity details",
                run,
            )
            activities = [
                DetailedActivity.from_summary(summary, detail) if detail is not None else summary
                for summary, detail in zip(activities, detailed)
            ]

        if coordinates:
            spatial = [a for a in activities if a.type not in NO_GEOMETRY_TYPES]
            if spatial:
                logger.info("Fetching coordinates for %d activities", len(spatial))
            streams = self._fetch_all(
                spatial,
                lambda a: self.source.get_activity_streams(a.id),
                "coordinates",
                run,
            )
            for activity, points in zip(spatial, streams):
                activity.coordinates = list(points or [])

            for activity in spatial:
                activity.coordinates = filter_track_points(
                    activity.coordinates,
                    blackout_zones=self.blackout_zones,
                    dedup=self.config.export.dedup,
                )

        if segment_cache is not None and len(segment_cache):
            starred = segment_cache.ids()
            for activity in activities:
                if isinstance(activity, DetailedActivity):
                    activity.segments = attach_starred_efforts(
                        activity, starred, self.config.export.aliases
                    )

        return activities

    def _segment_routes(self, cache: SegmentCache, run: FetchRun) -> list[SegmentData]:
        entries = cache.entries()
        if not entries:
            return []
        logger.info("Fetching routes for %d starred segments", len(entries))
        routes = self._fetch_all(
            entries,
            lambda e: self.source.get_segment_coordinates(e.id),
            "segment coordinates",
            run,
        )
        return [
            SegmentData.from_cache_entry(entry, points)
            for entry, points in zip(entries, routes)
        ]

    def _bikes(self, run: FetchRun) -> dict[str, str]:
        try:
            return self.source.get_athlete_bikes()
        except FetchError as e:
            logger.warning("Failed to fetch bikes: %s", e)
            run.errors.append({"phase": "bikes", "error": str(e)})
            return {}

    def export_geo(
        self,
        path: Path,
        options: ExportOptions | None = None,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Export activities and starred segments to KML or GPX.

        Args:
            path: ``.kml`` file, ``.gpx`` file, or a directory for one GPX
                file per activity.
            options: What to include in the output.
            after: Only activities after this time.
            before: Only activities before this time.
            limit: Maximum number of activities.
            deadline: Seconds after which outstanding fetches are abandoned.
            cancel: Event that abandons outstanding fetches when set.

        Returns:
            Dictionary with export results.

        Raises:
            WriteError: If the output cannot be written.
        """
        options = options or ExportOptions()
        if not options.date_label:
            options = replace(options, date_label=date_label(after, before))
        run = FetchRun(
            deadline=time.monotonic() + deadline if deadline is not None else None,
            cancel=cancel,
        )
        is_kml = path.suffix.lower() == ".kml"

        cache = self.load_segment_cache() if options.efforts or options.segments else SegmentCache()
        activities: list[Activity] = []
        if options.activities or not is_kml:
            activities = self.collect(
                run,
                after=after,
                before=before,
                limit=limit,
                details=options.laps or options.efforts,
                segment_cache=cache if options.efforts else None,
            )

        segments: list[SegmentData] = []
        if is_kml and options.segments:
            segments = self._segment_routes(cache, run)

        bikes = self._bikes(run) if is_kml and activities else {}
        stats = write_geo_export(
            path,
            activities,
            segments,
            options=options,
            styles=self.styles,
            bikes=bikes,
            segment_cache=cache,
        )
        return {
            "output": str(path),
            "activities_found": len(activities),
            **stats,
            "errors": run.errors,
        }

    def export_bikelog(
        self,
        path: Path,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Export activities as bikelog day entries for a PDF form.

        Returns:
            Dictionary with export results.

        Raises:
            WriteError: If the output cannot be written.
        """
        run = FetchRun(
            deadline=time.monotonic() + deadline if deadline is not None else None,
            cancel=cancel,
        )
        cache = self.load_segment_cache()
        activities = self.collect(
            run,
            after=after,
            before=before,
            limit=limit,
            details=True,
            coordinates=False,
            segment_cache=cache,
        )
        entries = aggregate_days(activities, self._bikes(run), self.bike_defs)
        write_bikelog(path, entries)
        return {
            "output": str(path),
            "activities_found": len(activities),
            "days_written": len(entries),
            "errors": run.errors,
        }


    def athlete(self) -> dict[str, Any]:
        """Fetch the athlete profile with bikes and their bikelog labels.

        Returns:
            Dictionary with ``athlete`` (profile fields) and ``bikes``, a list
            of id, name and configured label (empty when unmapped).
        """
        profile = dict(self.source.get_athlete_profile())
        bikes = []
        owned = profile.pop("bikes", {})
        for gear_id, name in sorted(owned.items(), key=lambda b: b[1].casefold()):
            bike_def = find_bike_def(name, self.bike_defs)
            bikes.append({"id": gear_id, "name": name, "label": bike_def.name if bike_def else ""})
        return {"athlete": profile, "bikes": bikes}

    def segment_efforts(
        self,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Collect efforts on starred segments for activities in a date range.

        Returns:
            Dictionary with ``segments``: each cached starred segment with its
            efforts, fastest first.
        """
        run = FetchRun(
            deadline=time.monotonic() + deadline if deadline is not None else None,
            cancel=cancel,
        )
        cache = self.load_segment_cache()
        activities: list[Activity] = []
        if len(cache):
            activities = self.collect(
                run,
                after=after,
                before=before,
                limit=limit,
                details=True,
                coordinates=False,
                segment_cache=cache,
            )

        efforts: dict[int, list[dict[str, Any]]] = {}
        for activity in activities:
            for effort in activity.segments:
                efforts.setdefault(effort.segment_id, []).append(
                    {
                        "activity_id": activity.id,
                        "date": activity.start_date_local.date().isoformat(),
                        "elapsed_time": effort.elapsed_time,
                    }
                )

        segments = []
        for entry in sorted(cache.entries(), key=lambda e: e.name.casefold()):
            found = sorted(efforts.get(entry.id, []), key=lambda e: (e["elapsed_time"], e["date"]))
            segments.append({"id": entry.id, **entry.to_dict(), "efforts": found})
        return {
            "activities_found": len(activities),
            "segments": segments,
            "errors": run.errors,
        }

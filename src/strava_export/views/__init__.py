"""Geo export views: KML documents and GPX files."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from strava_export.models.activity import Activity
from strava_export.models.segment import SegmentCache, SegmentData
from strava_export.views.gpx import GpxWriter
from strava_export.views.kml import KmlWriter
from strava_export.views.styles import LineStyle
from strava_export.views.writer import ExportOptions

__all__ = ["ExportOptions", "GpxWriter", "KmlWriter", "write_geo_export"]


def write_geo_export(
    path: Path | str,
    activities: Sequence[Activity],
    segments: Sequence[SegmentData] = (),
    options: ExportOptions | None = None,
    styles: Mapping[str, LineStyle] | None = None,
    bikes: Mapping[str, str] | None = None,
    segment_cache: SegmentCache | None = None,
) -> dict[str, int]:
    """Write a KML file, a GPX file or a folder of GPX files.

    The output kind follows the path: ``.kml`` for KML, ``.gpx`` for a single
    aggregated GPX file, anything else for a directory of per-activity GPX
    files.

    Returns:
        Counts reported by the writer.

    Raises:
        WriteError: If the output cannot be written.
    """
    path = Path(path)
    if path.suffix.lower() == ".kml":
        writer = KmlWriter(options, styles=styles, bikes=bikes, segment_cache=segment_cache)
        return writer.write(path, activities, segments)
    return GpxWriter(options, segment_cache).write(path, activities)

"""KML document writer for Google Earth."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

from strava_export.lib.fmt import distance_string, elevation_string, escape, format_number
from strava_export.models.activity import Activity, TrackPoint
from strava_export.models.segment import SegmentCache, SegmentData
from strava_export.services.laps import LapWaypoint, correlate_laps
from strava_export.views.styles import DEFAULT_LINE_STYLES, LineStyle, select_style
from strava_export.views.writer import ExportOptions, TrackWriter, track_name

logger = logging.getLogger("strava_export.kml")

KML_NAMESPACES = (
    'xmlns="http://www.opengis.net/kml/2.2" '
    'xmlns:gx="http://www.google.com/kml/ext/2.2" '
    'xmlns:kml="http://www.opengis.net/kml/2.2" '
    'xmlns:atom="http://www.w3.org/2005/Atom"'
)
LAP_ICON = "http://maps.google.com/mapfiles/kml/shapes/placemark_circle.png"


def _coordinate(point: TrackPoint, altitude: bool = True) -> str:
    alt = point.altitude if altitude and point.altitude is not None else 0
    return f"{point.lng},{point.lat},{format_number(alt)}"


class KmlWriter(TrackWriter):
    """Write activities and starred segments to a single KML document."""

    def __init__(
        self,
        options: ExportOptions | None = None,
        styles: Mapping[str, LineStyle] | None = None,
        bikes: Mapping[str, str] | None = None,
        segment_cache: SegmentCache | None = None,
    ) -> None:
        super().__init__(options, segment_cache)
        self.styles = styles if styles is not None else DEFAULT_LINE_STYLES
        self.bikes = bikes or {}
        self._track_index = 0

    def write(
        self,
        path: Path,
        activities: Sequence[Activity],
        segments: Sequence[SegmentData] = (),
    ) -> dict[str, int]:
        """Write the KML document.

        Args:
            path: Output file.
            activities: Activities with filtered coordinates.
            segments: Starred segments with coordinates.

        Returns:
            Counts of written and skipped activities and written segments.

        Raises:
            WriteError: If the file cannot be written.
        """
        self._track_index = 0
        stats = {"activities": 0, "skipped": 0, "segments": 0, "laps": 0}
        self._open(path)
        try:
            self._header()
            if self.options.activities:
                self._activities(activities, stats)
            if self.options.segments:
                stats["segments"] = self._segments(segments)
            self._footer()
            self._close()
        except OSError as e:
            raise self._abort(path, e) from e

        logger.info(
            "Wrote %d activities and %d segments to %s",
            stats["activities"],
            stats["segments"],
            path,
        )
        if stats["skipped"]:
            logger.info("Skipped %d activities without coordinates", stats["skipped"])
        return stats

    def _header(self) -> None:
        self.writeln(0, '<?xml version="1.0" encoding="UTF-8"?>')
        self.writeln(0, f"<kml {KML_NAMESPACES}>")
        self.writeln(1, "<Document>")
        self.writeln(2, "<name>Strava Activities</name>")
        self.writeln(2, "<open>1</open>")
        for name, style in self.styles.items():
            self.writelns(
                2,
                [
                    f'<Style id="StravaLineStyle{escape(name)}">',
                    f"  <LineStyle><color>{style.color}</color><width>{style.width}</width></LineStyle>",
                    f"  <PolyStyle><color>{style.color}</color></PolyStyle>",
                    "</Style>",
                ],
            )
        if self.options.laps:
            self.writelns(
                2,
                [
                    '<Style id="LapMarker">',
                    "  <IconStyle>",
                    "    <scale>0.6</scale>",
                    f"    <Icon><href>{LAP_ICON}</href></Icon>",
                    "  </IconStyle>",
                    "  <LabelStyle><scale>0</scale></LabelStyle>",
                    "</Style>",
                ],
            )
        self.flush()

    def _footer(self) -> None:
        self.writeln(1, "</Document>")
        self.writeln(0, "</kml>")
        self.flush()

    def _folder_name(self, title: str) -> str:
        if self.options.date_label:
            return f"{title} {escape(self.options.date_label)}"
        return title

    def _activities(self, activities: Sequence[Activity], stats: dict[str, int]) -> None:
        if not activities:
            return
        self.writeln(2, f"<Folder><name>{self._folder_name('Activities')}</name><open>1</open>")
        for activity in activities:
            if not activity.has_geometry():
                logger.debug("No coordinates for %s", activity)
                stats["skipped"] += 1
                continue
            stats["laps"] += self._activity(3, activity)
            stats["activities"] += 1
            self.flush()
        self.writeln(2, "</Folder>")
        self.flush()

    def _activity(self, indent: int, activity: Activity) -> int:
        lines = self.description_lines(activity, markup=True)
        description = "<![CDATA[" + "<br>\n".join(lines) + "]]>" if lines else None
        self._track_index += 1
        self._placemark(
            indent,
            placemark_id=f"StravaTrack{self._track_index}",
            name=escape(track_name(activity)),
            style=select_style(activity, self.styles, self.bikes),
            points=activity.coordinates,
            description=description,
        )

        if not (self.options.laps and activity.is_detailed):
            return 0
        waypoints = correlate_laps(activity)
        for waypoint in waypoints:
            self._lap_point(indent, waypoint)
        return len(waypoints)

    def _lap_point(self, indent: int, waypoint: LapWaypoint) -> None:
        self._track_index += 1
        self.writelns(
            indent,
            [
                f'<Placemark id="LapMarker{self._track_index}">',
                f"  <name>Lap {waypoint.lap_number}</name>",
                f"  <description>{escape(waypoint.comment())}</description>",
                "  <visibility>1</visibility>",
                "  <styleUrl>#LapMarker</styleUrl>",
                f"  <Point><coordinates>{_coordinate(waypoint.point, altitude=False)}</coordinates></Point>",
                "</Placemark>",
            ],
        )

    def _placemark(
        self,
        indent: int,
        placemark_id: str,
        name: str,
        style: str,
        points: Sequence[TrackPoint],
        description: str | None = None,
    ) -> None:
        self.writeln(indent, f'<Placemark id="{placemark_id}">')
        self.writeln(indent + 1, f"<name>{name}</name>")
        if description:
            self.writeln(indent + 1, f"<description>{description}</description>")
        self.writeln(indent + 1, "<visibility>1</visibility>")
        self.writeln(indent + 1, f"<styleUrl>#StravaLineStyle{escape(style)}</styleUrl>")
        self.writeln(indent + 1, "<LineString>")
        self.writeln(indent + 2, "<tessellate>1</tessellate>")
        if points:
            self.writeln(indent + 2, "<coordinates>")
            self.writeln(indent + 3, " ".join(_coordinate(p) for p in points))
            self.writeln(indent + 2, "</coordinates>")
        self.writeln(indent + 1, "</LineString>")
        self.writeln(indent, "</Placemark>")

    def _segments(self, segments: Sequence[SegmentData]) -> int:
        ordered = sorted(segments, key=lambda s: s.name.casefold())
        drawn = [s for s in ordered if s.coordinates]
        if len(drawn) < len(ordered):
            logger.info("Skipped %d segments without coordinates", len(ordered) - len(drawn))
        if not drawn:
            return 0

        if self.options.segments == "flat":
            self._segment_folder(2, "Segments", drawn)
        else:
            regions: dict[tuple[str, str], list[SegmentData]] = {}
            for segment in drawn:
                regions.setdefault((segment.country, segment.state), []).append(segment)
            logger.debug("Segments found in regions: %s", sorted(regions))
            for (country, state), members in sorted(regions.items()):
                if country and state:
                    title = f"Segments for {escape(state)}, {escape(country)}"
                elif country or state:
                    title = f"Segments for {escape(country or state)}"
                else:
                    title = "Segments"
                self._segment_folder(2, title, members)
        return len(drawn)

    def _segment_folder(self, indent: int, title: str, segments: Sequence[SegmentData]) -> None:
        self.writeln(indent, f"<Folder><name>{title}</name><open>1</open>")
        if self.options.date_label:
            self.writeln(
                indent + 1,
                f"<description>Efforts for {escape(self.options.date_label)}</description>",
            )
        for segment in segments:
            self._track_index += 1
            description = None
            if self.options.more:
                imperial = self.options.imperial
                description = (
                    f"<![CDATA[<b>Distance:</b> {distance_string(segment.distance, imperial)}<br>\n"
                    f"<b>Elevation Gain:</b> {elevation_string(segment.elevation_gain, imperial)}]]>"
                )
            self._placemark(
                indent + 1,
                placemark_id=f"StravaSegment{self._track_index}",
                name=escape(segment.name),
                style="Segment",
                points=segment.coordinates,
                description=description,
            )
        self.writeln(indent, "</Folder>")
        self.flush()

"""Buffered document writer shared by the KML and GPX writers.

Content is accumulated in memory and flushed in blocks (header, each
activity, each folder, footer) to bound the number of write calls.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from strava_export.errors import WriteError
from strava_export.lib.fmt import distance_string, elevation_string, escape, format_hm, format_ms
from strava_export.models.activity import Activity
from strava_export.models.segment import SegmentCache

logger = logging.getLogger("strava_export.writer")

INDENT = "  "


@dataclass(frozen=True)
class ExportOptions:
    """Options controlling what a geo export contains.

    Attributes:
        activities: Include activity tracks.
        segments: Include starred segments, ``"nested"`` by country/state or
            ``"flat"`` in one folder; None to omit them.
        laps: Add lap waypoints.
        more: Add distance, elevation and time lines to descriptions.
        efforts: Add starred segment effort lines to descriptions.
        imperial: Use miles and feet in descriptions.
        date_label: Date range text for folder names.
    """

    activities: bool = True
    segments: str | None = None
    laps: bool = False
    more: bool = False
    efforts: bool = False
    imperial: bool = False
    date_label: str = ""


class TrackWriter:
    """Base class holding the output buffer and stream."""

    def __init__(
        self,
        options: ExportOptions | None = None,
        segment_cache: SegmentCache | None = None,
    ) -> None:
        self.options = options or ExportOptions()
        self.segment_cache = segment_cache or SegmentCache()
        self._buffer: list[str] = []
        self._stream: IO[str] | None = None

    def write(self, indent: int, text: str) -> None:
        self._buffer.append(INDENT * indent + text)

    def writeln(self, indent: int, text: str) -> None:
        self._buffer.append(INDENT * indent + text + "\n")

    def writelns(self, indent: int, lines: Iterable[str]) -> None:
        for line in lines:
            self.writeln(indent, line)

    def flush(self) -> None:
        """Write buffered content to the output stream."""
        if self._stream is not None and self._buffer:
            content = "".join(self._buffer)
            self._buffer.clear()
            self._stream.write(content)

    def _open(self, path: Path) -> None:
        try:
            self._stream = open(path, "w", encoding="utf-8")
        except OSError as e:
            raise WriteError(f"Cannot open {path} for writing: {e}") from e

    def _close(self) -> None:
        stream, self._stream = self._stream, None
        self._buffer.clear()
        if stream is not None:
            stream.close()

    def _abort(self, path: Path, error: OSError) -> WriteError:
        """Close the stream after a failed write and wrap the error."""
        try:
            self._close()
        except OSError:
            logger.debug("Error closing %s after write failure", path, exc_info=True)
        return WriteError(f"Failed writing {path}: {error}")

    def description_lines(self, activity: Activity, markup: bool = False) -> list[str]:
        """Description lines for an activity.

        Args:
            activity: Activity being written.
            markup: Emit HTML (bold labels, escaped names) for a KML balloon.

        Returns:
            Lines, empty when no description options are set.
        """
        opts = self.options

        def label(text: str) -> str:
            return f"<b>{text}:</b>" if markup else f"{text}:"

        def name(text: str) -> str:
            return escape(text) if markup else text

        lines: list[str] = []
        if opts.more or opts.efforts:
            lines.append(f"{label('Distance')} {distance_string(activity.distance, opts.imperial)}")
            lines.append(
                f"{label('Elevation Gain')} "
                f"{elevation_string(activity.total_elevation_gain, opts.imperial)}"
            )
        if opts.more:
            lines.append(f"{label('Moving Time')} {format_hm(activity.moving_time)}")
            lines.append(f"{label('Elapsed Time')} {format_hm(activity.elapsed_time)}")
        if opts.efforts:
            for effort in activity.segments:
                time = format_ms(effort.elapsed_time)
                cached = self.segment_cache.get(effort.segment_id)
                if cached is not None:
                    lines.append(
                        f"Up {name(effort.name)}: {distance_string(cached.distance, opts.imperial)}, "
                        f"{elevation_string(cached.elevation_gain, opts.imperial)} [{time}]"
                    )
                else:
                    lines.append(f"Up {name(effort.name)} [{time}]")
        return lines


def track_name(activity: Activity) -> str:
    return f"{activity.start_date_local.date().isoformat()} - {activity.name}"

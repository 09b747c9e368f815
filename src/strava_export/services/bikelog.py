"""Bikelog generation: per-day summaries for Acroform PDF import.

Activities are grouped by the julian day of their local start date. Each day
tracks at most two bike events (distance, bike, elevation, moving time) plus
free-text notes covering every activity of the day.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from strava_export.errors import WriteError
from strava_export.lib.fmt import format_hm, format_ms, format_number
from strava_export.models.activity import Activity, DetailedActivity

logger = logging.getLogger("strava_export.bikelog")

XFDF_NS = "http://ns.adobe.com/xfdf-transition/"
MAX_EVENTS = 2
MOTO_PATTERN = re.compile(r"^moto$", re.IGNORECASE)

_PROPERTY = re.compile(r"^([^\s=]+)\s*=\s*(.*)$")

# JDN of 0001-01-01 minus one, so that JDN = date.toordinal() + offset
_JDN_OFFSET = 1721425


@dataclass(frozen=True)
class BikeDef:
    """Maps a Strava bike name to the short label used in the bikelog."""

    pattern: str
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> BikeDef:
        return cls(pattern=str(data["pattern"]), name=str(data["name"]))


@dataclass
class DayEvent:
    """One bike slot of a bikelog day."""

    distance_km: float
    bike_label: str
    elevation_gain_m: int
    moving_time_hours: float


@dataclass
class DayEntry:
    """Aggregated bikelog data for one local calendar day."""

    julian_day: int
    date: date
    events: list[DayEvent] = field(default_factory=list)
    note0: str | None = None
    note1: str | None = None
    weight: float | None = None

    def add_note(self, note: str) -> None:
        self.note0 = f"{self.note0}\n\n{note}" if self.note0 else note

    def add_event(self, event: DayEvent) -> bool:
        """Merge or append an event, honouring the two-slot cap.

        Existing slots are scanned from the last to the first; a slot with the
        same bike label absorbs the distance. Otherwise the event takes a free
        slot, or is dropped when both slots hold other bikes.

        Returns:
            False if the event was dropped.
        """
        for existing in reversed(self.events):
            if existing.bike_label == event.bike_label:
                existing.distance_km = round(existing.distance_km + event.distance_km, 2)
                return True
        if len(self.events) < MAX_EVENTS:
            self.events.append(event)
            return True
        return False


def julian_day(day: date) -> int:
    """Julian Day Number of a calendar date."""
    return day.toordinal() + _JDN_OFFSET


def is_moto(bike_name: str | None) -> bool:
    return bool(bike_name) and MOTO_PATTERN.match(bike_name.strip()) is not None


def find_bike_def(bike_name: str, bike_defs: Sequence[BikeDef] = ()) -> BikeDef | None:
    """Find the definition whose pattern matches a bike name (case-insensitive)."""
    for bike_def in bike_defs:
        if bike_def.pattern.lower() == bike_name.lower():
            return bike_def
    return None


def bike_label(bike_name: str, bike_defs: Sequence[BikeDef] = ()) -> str:
    """Map a Strava bike name to its bikelog label."""
    bike_def = find_bike_def(bike_name, bike_defs)
    return bike_def.name if bike_def is not None else bike_name


def parse_activity_text(activity: Activity) -> dict[str, str]:
    """Split description and private note into properties and free text.

    ``key=value`` lines become properties; the remaining non-blank lines are
    returned under ``description``.
    """
    if not isinstance(activity, DetailedActivity):
        return {}
    parts = [p for p in (activity.description, activity.private_note) if p and p.strip()]
    if not parts:
        return {}

    result: dict[str, str] = {}
    desc_lines: list[str] = []
    for line in "\n".join(parts).splitlines():
        match = _PROPERTY.match(line)
        if match:
            result[match.group(1)] = match.group(2)
        elif line.strip():
            desc_lines.append(line)
    if desc_lines:
        result["description"] = "\n".join(desc_lines)
    return result


def extract_weight(props: Mapping[str, Any]) -> float | None:
    """Extract ``weight`` (case-insensitive), accepting an optional kg suffix."""
    for key, value in props.items():
        if key.lower() == "weight" and value is not None:
            text = re.sub(r"\s*kg$", "", str(value).strip(), flags=re.IGNORECASE)
            try:
                return float(text)
            except ValueError:
                return None
    return None


def _text_lines(props: Mapping[str, str]) -> list[str]:
    lines: list[str] = []
    if props.get("description"):
        lines.append(props["description"])
    for key, value in props.items():
        if key != "description" and key.lower() != "weight":
            lines.append(f"{key[:1].upper()}{key[1:].lower()}: {value}")
    return lines


def _segment_line(activity: Activity) -> str | None:
    if not activity.segments:
        return None
    parts = []
    prefix = "Up "
    for effort in activity.segments:
        parts.append(f"{prefix}{effort.name} [{format_ms(effort.elapsed_time or effort.moving_time)}]")
        prefix = "up "
    return ", ".join(parts)


def _ride_heading(activity: Activity, moto: bool) -> list[str]:
    if moto:
        return [
            f"Moto: {activity.name}",
            f"Distance: {format_number(activity.distance_km())}, "
            f"Elevation: {round(activity.total_elevation_gain)}",
        ]
    if activity.commute:
        return [f"Commute: {activity.name}"]
    if activity.type == "EBikeRide":
        return [f"EBike: {activity.name}"]
    return [f"Bike: {activity.name}"]


def _activity_note(activity: Activity, moto: bool) -> list[str]:
    if activity.is_ride():
        lines = _ride_heading(activity, moto)
        times = []
        if activity.moving_time:
            times.append(f"Moving: {format_hm(activity.moving_time)}")
        if activity.elapsed_time:
            times.append(f"Elapsed: {format_hm(activity.elapsed_time)}")
        if times:
            lines.append(", ".join(times))
        return lines
    return [
        f"{activity.type}: {activity.name}",
        f"Distance: {format_number(activity.distance_km())} km; "
        f"Duration: {format_hm(activity.moving_time)}",
    ]


def aggregate_days(
    activities: Iterable[Activity],
    bikes: Mapping[str, str],
    bike_defs: Sequence[BikeDef] = (),
) -> dict[int, DayEntry]:
    """Combine activities into bikelog day entries.

    Args:
        activities: Activities in chronological order.
        bikes: Gear id to Strava bike name.
        bike_defs: Optional bike name to label mapping.

    Returns:
        Day entries keyed and ordered by julian day.
    """
    result: dict[int, DayEntry] = {}
    for activity in activities:
        local_date = activity.start_date_local.date()
        jd = julian_day(local_date)
        entry = result.get(jd)
        if entry is None:
            entry = result[jd] = DayEntry(julian_day=jd, date=local_date)

        bike_name = bikes.get(activity.gear_id) if activity.gear_id else None
        moto = is_moto(bike_name)

        lines = _activity_note(activity, moto)
        props = parse_activity_text(activity)
        weight = extract_weight(props)
        if weight is not None:
            entry.weight = weight
        lines.extend(_text_lines(props))
        segment_line = _segment_line(activity)
        if segment_line:
            lines.append(segment_line)
        entry.add_note("\n".join(lines))

        if activity.is_ride() and bike_name and not moto and activity.type != "EBikeRide":
            event = DayEvent(
                distance_km=activity.distance_km(),
                bike_label=bike_label(bike_name, bike_defs),
                elevation_gain_m=round(activity.total_elevation_gain),
                moving_time_hours=round(activity.moving_time / 36) / 100,
            )
            if not entry.add_event(event):
                logger.debug("Dropped event for %s: day %d has no free bike slot", activity, jd)

    return dict(sorted(result.items()))


def build_bikelog_xml(entries: Mapping[int, DayEntry]) -> ET.Element:
    """Build the ``<fields>`` document for the given day entries."""
    ET.register_namespace("xfdf", XFDF_NS)
    original = f"{{{XFDF_NS}}}original"

    root = ET.Element("fields")
    day = ET.SubElement(root, "day")
    for jd, entry in entries.items():
        group = ET.SubElement(day, "group", {original: str(jd)})
        for idx, event in enumerate(entry.events[:MAX_EVENTS]):
            slot = ET.SubElement(group, "group", {original: str(idx)})
            ET.SubElement(slot, "bike").text = event.bike_label
            ET.SubElement(slot, "dist").text = format_number(event.distance_km)
            ET.SubElement(slot, "el").text = str(event.elevation_gain_m)
            ET.SubElement(slot, "t").text = format_number(event.moving_time_hours)
        if entry.note0:
            ET.SubElement(group, "note0").text = entry.note0
        if entry.note1:
            ET.SubElement(group, "note1").text = entry.note1
        if entry.weight is not None:
            ET.SubElement(group, "wt").text = format_number(entry.weight)
    return root


def write_bikelog(path: Path, entries: Mapping[int, DayEntry]) -> Path:
    """Write the bikelog XML document.

    Raises:
        WriteError: If the file cannot be written.
    """
    root = build_bikelog_xml(entries)
    ET.indent(root)
    content = '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise WriteError(f"Failed to write bikelog {path}: {e}") from e
    logger.info("Wrote %d days (%d bytes) to %s", len(entries), len(content), path)
    return path

"""Attach starred segment efforts to detailed activities."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from strava_export.errors import PreconditionError
from strava_export.lib.fmt import format_ms
from strava_export.models.activity import Activity, AttachedEffort, DetailedActivity

logger = logging.getLogger("strava_export.segments")

UNKNOWN_SEGMENT_NAME = "Unknown"


def resolve_segment_name(raw_name: str | None, aliases: Mapping[str, str] | None = None) -> str:
    """Resolve the display name of a segment.

    Order: exact alias, case-insensitive alias, trimmed name, "Unknown".
    """
    if raw_name is None:
        return UNKNOWN_SEGMENT_NAME
    name = str(raw_name).strip()
    if aliases:
        if name in aliases:
            return aliases[name]
        folded = name.casefold()
        for alias_key, alias_value in aliases.items():
            if alias_key.strip().casefold() == folded:
                return alias_value
    return name or UNKNOWN_SEGMENT_NAME


def _effort_segment(effort: Mapping[str, Any]) -> Mapping[str, Any]:
    segment = effort.get("segment")
    return segment if isinstance(segment, Mapping) else {}


def attach_starred_efforts(
    activity: Activity,
    starred_ids: Iterable[int | str],
    aliases: Mapping[str, str] | None = None,
) -> list[AttachedEffort]:
    """Select the activity's efforts on starred segments.

    Args:
        activity: Detailed activity with raw ``segment_efforts``.
        starred_ids: Ids of the athlete's starred segments.
        aliases: Segment name to display name overrides.

    Returns:
        New AttachedEffort records, in effort order.

    Raises:
        PreconditionError: If the activity is a summary activity.
    """
    if not isinstance(activity, DetailedActivity):
        raise PreconditionError(f"Segment efforts require a detailed activity: {activity}")

    starred = {str(i) for i in starred_ids}
    result: list[AttachedEffort] = []
    for effort in activity.segment_efforts:
        segment = _effort_segment(effort)
        segment_id = segment.get("id")
        if segment_id is None or str(segment_id) not in starred:
            continue
        raw_name = segment.get("name", effort.get("name"))
        attached = AttachedEffort(
            segment_id=int(segment_id),
            name=resolve_segment_name(raw_name, aliases),
            elapsed_time=float(effort.get("elapsed_time") or 0),
            moving_time=float(effort.get("moving_time") or 0),
            distance=float(effort.get("distance") or 0.0),
        )
        logger.debug(
            "Adding segment '%s', elapsed time %s to %s",
            attached.name,
            format_ms(attached.elapsed_time),
            activity,
        )
        result.append(attached)
    return result

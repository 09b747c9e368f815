"""KML line styles.

Colors are 8 hex digits in aabbggrr order. The style table is built once
from the defaults plus user overrides and is read-only afterwards.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from strava_export.errors import ConfigError
from strava_export.models.activity import Activity
from strava_export.services.bikelog import is_moto

logger = logging.getLogger("strava_export.styles")

COLOR_PATTERN = re.compile(r"^[0-9a-fA-F]{8}$")

RESERVED_STYLES = frozenset({"Default", "Commute", "Moto", "Segment"})

ACTIVITY_TYPES = frozenset(
    {
        "AlpineSki",
        "BackcountrySki",
        "Canoeing",
        "Crossfit",
        "EBikeRide",
        "Elliptical",
        "GravelRide",
        "Golf",
        "Handcycle",
        "Hike",
        "IceSkate",
        "InlineSkate",
        "Kayaking",
        "Kitesurf",
        "MountainBikeRide",
        "NordicSki",
        "Nordic Ski",
        "Ride",
        "RockClimbing",
        "RollerSki",
        "Rowing",
        "Run",
        "Sail",
        "Skateboard",
        "Snowboard",
        "Snowshoe",
        "Soccer",
        "StairStepper",
        "StandUpPaddling",
        "Stand Up Paddling",
        "Surfing",
        "Swim",
        "TrailRun",
        "Velomobile",
        "VirtualRide",
        "VirtualRun",
        "Walk",
        "WeightTraining",
        "Wheelchair",
        "Windsurf",
        "Workout",
        "Yoga",
    }
)


@dataclass(frozen=True)
class LineStyle:
    """Color (aabbggrr) and width in pixels of a KML line."""

    color: str
    width: int

    @classmethod
    def from_value(cls, name: str, value: Any) -> LineStyle:
        """Validate a style definition such as ``{"color": "C03030C0", "width": 2}``.

        Raises:
            ConfigError: If the name or the definition is invalid.
        """
        if name not in RESERVED_STYLES and name not in ACTIVITY_TYPES:
            raise ConfigError(f"Unknown line style name '{name}'")
        if isinstance(value, LineStyle):
            return value
        if not isinstance(value, Mapping):
            raise ConfigError(f"Line style '{name}' must be a table with color and width")
        color = value.get("color")
        width = value.get("width")
        if not isinstance(color, str) or not COLOR_PATTERN.match(color):
            raise ConfigError(f"Line style '{name}' color must be 8 hex digits (aabbggrr), got {color!r}")
        if isinstance(width, bool) or not isinstance(width, int) or width <= 0:
            raise ConfigError(f"Line style '{name}' width must be a positive integer, got {width!r}")
        return cls(color=color, width=width)


DEFAULT_LINE_STYLES: Mapping[str, LineStyle] = MappingProxyType(
    {
        "Default": LineStyle("C00000FF", 4),
        "Ride": LineStyle("C00000A0", 4),
        "EBikeRide": LineStyle("7FFF00FF", 4),
        "Moto": LineStyle("6414F03C", 4),
        "Segment": LineStyle("C0FFFFFF", 6),
        "Commute": LineStyle("C085037D", 4),
        "Hike": LineStyle("F0FF0000", 4),
        "Walk": LineStyle("F0F08000", 4),
        "Stand Up Paddling": LineStyle("F0F08000", 4),
        "Nordic Ski": LineStyle("F0F08000", 4),
    }
)


def build_line_styles(overrides: Mapping[str, Any] | None = None) -> Mapping[str, LineStyle]:
    """Merge user overrides into the default styles.

    Invalid overrides are logged and ignored, leaving the default in place.

    Args:
        overrides: Style name to ``{"color": ..., "width": ...}``.

    Returns:
        Read-only style table.
    """
    styles = dict(DEFAULT_LINE_STYLES)
    for name, value in (overrides or {}).items():
        try:
            styles[name] = LineStyle.from_value(name, value)
        except ConfigError as e:
            logger.warning(
                "Ignoring line style error: %s. Style must be in form "
                '{ "color": "C03030C0", "width": 2 }',
                e,
            )
    return MappingProxyType(styles)


def select_style(
    activity: Activity,
    styles: Mapping[str, LineStyle],
    bikes: Mapping[str, str] | None = None,
) -> str:
    """Pick the style name for an activity line.

    Precedence: Moto (bike name matches) > Commute > activity type > Default.
    """
    bike_name = (bikes or {}).get(activity.gear_id) if activity.gear_id else None
    if is_moto(bike_name):
        return "Moto"
    if activity.commute and "Commute" in styles:
        return "Commute"
    if activity.type in styles:
        return activity.type
    return "Default"

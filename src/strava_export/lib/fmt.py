"""Human-readable formatting of distances, elevations and durations."""

from __future__ import annotations

import html

METRES_PER_MILE = 1609.344
METRES_PER_FOOT = 0.3048


def format_number(value: float) -> str:
    """Format a number without a trailing ``.0`` for whole values."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(value)


def precision(value: float, factor: int, unit: str) -> str:
    """Round ``value`` to ``1/factor`` and append ``unit``."""
    return format_number(round(value * factor) / factor) + unit


def distance_string(metres: float | None, imperial: bool = False) -> str:
    """Format a distance in km (or miles), two decimals."""
    metres = metres or 0.0
    if imperial:
        return precision(metres / METRES_PER_MILE, 100, " miles")
    return precision(metres / 1000, 100, " km")


def elevation_string(metres: float | None, imperial: bool = False) -> str:
    """Format an elevation in whole metres (or feet)."""
    metres = metres or 0.0
    if imperial:
        return precision(metres / METRES_PER_FOOT, 1, " ft")
    return precision(metres, 1, " m")


def format_ms(seconds: float) -> str:
    """Format seconds as ``M:SS`` or ``H:MM:SS`` once an hour is reached."""
    seconds = int(seconds or 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_hm(seconds: float) -> str:
    """Format seconds as ``H:MM``, dropping seconds."""
    seconds = int(seconds or 0)
    hours, rest = divmod(seconds, 3600)
    return f"{hours}:{rest // 60:02d}"


def escape(text: str | None) -> str:
    """Escape text for inclusion in XML character data or attributes."""
    return html.escape(text or "", quote=True)

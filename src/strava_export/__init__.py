"""Strava Activity Export CLI Tool.

Exports Strava activities and starred segments to KML for Google Earth,
to GPX for GPS viewers, and to bikelog XML for Acroform PDF import.
"""

try:
    from strava_export._version import __version__
except ImportError:
    # Fallback for development without build
    __version__ = "0.0.0.dev0+unknown"

__author__ = "strava_export contributors"
__license__ = "Apache-2.0"

__all__ = ["__version__"]

"""Exception types for strava-export.

Per-item errors (fetch failures, rate limits) are recovered by the export
pipeline; document-level errors (write failures) propagate to the caller.
"""

from __future__ import annotations


class StravaExportError(Exception):
    """Base class for strava-export errors."""


class PreconditionError(StravaExportError):
    """Raised when detailed activity data is required but a summary was given."""


class FetchError(StravaExportError):
    """Upstream API failure for a single activity or segment."""


class RateLimitError(FetchError):
    """Upstream API rate limit reached; remaining fetches are abandoned."""


class WriteError(StravaExportError):
    """Output stream failure; aborts the export."""


class ConfigError(StravaExportError):
    """Invalid configuration entry, such as a malformed line style."""

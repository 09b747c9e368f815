"""Starred segment models and the on-disk segment cache.

The cache is a JSON file keyed by segment id. It stores segment metadata
only; segment coordinates are fetched each time they are needed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from strava_export.errors import ConfigError
from strava_export.models.activity import TrackPoint

logger = logging.getLogger("strava_export.segments")


@dataclass(frozen=True)
class StarredSegmentCacheEntry:
    """Cached metadata for one starred segment."""

    id: int
    name: str
    distance: float = 0.0
    gradient: float = 0.0
    elevation_gain: float = 0.0
    country: str = ""
    state: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary.

        Returns:
            Dictionary representation.
        """
        return {
            "name": self.name,
            "distance": self.distance,
            "gradient": self.gradient,
            "elevation": self.elevation_gain,
            "country": self.country,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, segment_id: int | str, data: dict[str, Any]) -> StarredSegmentCacheEntry:
        """Create from a cache file entry.

        Args:
            segment_id: Segment id (the cache key).
            data: Entry dictionary.

        Returns:
            StarredSegmentCacheEntry instance.
        """
        return cls(
            id=int(segment_id),
            name=data.get("name") or "",
            distance=float(data.get("distance") or 0.0),
            gradient=float(data.get("gradient") or 0.0),
            elevation_gain=float(data.get("elevation") or 0.0),
            country=data.get("country") or "",
            state=data.get("state") or "",
        )


@dataclass
class SegmentData:
    """A starred segment with its route, for the KML segments section."""

    id: int
    name: str
    coordinates: list[TrackPoint] = field(default_factory=list)
    country: str = ""
    state: str = ""
    distance: float = 0.0
    elevation_gain: float = 0.0

    @classmethod
    def from_cache_entry(
        cls, entry: StarredSegmentCacheEntry, coordinates: list[TrackPoint] | None = None
    ) -> SegmentData:
        return cls(
            id=entry.id,
            name=entry.name,
            coordinates=list(coordinates or []),
            country=entry.country,
            state=entry.state,
            distance=entry.distance,
            elevation_gain=entry.elevation_gain,
        )


@dataclass
class SegmentCache:
    """In-memory view of the starred segment cache file."""

    segments: dict[int, StarredSegmentCacheEntry] = field(default_factory=dict)
    last_modified: datetime | None = None

    def __len__(self) -> int:
        return len(self.segments)

    def get(self, segment_id: int | str) -> StarredSegmentCacheEntry | None:
        """Get a segment entry by id.

        Args:
            segment_id: Segment id as int or string.

        Returns:
            Cache entry or None.
        """
        try:
            return self.segments.get(int(segment_id))
        except (TypeError, ValueError):
            return None

    def ids(self) -> set[int]:
        """Ids of all starred segments."""
        return set(self.segments)

    def entries(self) -> list[StarredSegmentCacheEntry]:
        return list(self.segments.values())

    def replace(self, entries: list[StarredSegmentCacheEntry]) -> None:
        """Replace the cache contents with freshly fetched entries."""
        segments: dict[int, StarredSegmentCacheEntry] = {}
        for entry in entries:
            if entry.id in segments:
                old = segments[entry.id]
                logger.info(
                    "Segment %s (id %d) already listed (%s, %s); overwriting with (%s, %s)",
                    entry.name,
                    entry.id,
                    old.distance,
                    old.elevation_gain,
                    entry.distance,
                    entry.elevation_gain,
                )
            segments[entry.id] = entry
        self.segments = segments
        self.last_modified = datetime.now().astimezone()

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": "Strava segments",
            "lastModified": self.last_modified.isoformat() if self.last_modified else None,
            "segments": {str(k): v.to_dict() for k, v in self.segments.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SegmentCache:
        last_modified = data.get("lastModified")
        if isinstance(last_modified, str):
            last_modified = datetime.fromisoformat(last_modified)
        segments = {
            int(key): StarredSegmentCacheEntry.from_dict(key, value)
            for key, value in (data.get("segments") or {}).items()
        }
        return cls(segments=segments, last_modified=last_modified)


def load_segment_cache(path: Path) -> SegmentCache:
    """Load the starred segment cache.

    Args:
        path: Cache file path.

    Returns:
        SegmentCache instance (empty if the file does not exist).

    Raises:
        ConfigError: If the file is not a valid segment cache.
    """
    if not path.exists():
        logger.info("Segment cache not found: %s", path)
        return SegmentCache()

    try:
        with open(path) as f:
            data = json.load(f)
        cache = SegmentCache.from_dict(data)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        raise ConfigError(f"Invalid segment cache {path}: {e}") from e
    logger.info("Read %d starred segments from %s", len(cache), path)
    return cache


def save_segment_cache(path: Path, cache: SegmentCache) -> Path:
    """Save the starred segment cache.

    Args:
        path: Cache file path.
        cache: Cache to save.

    Returns:
        Path to saved file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(cache.to_dict(), f, indent=2)
    logger.info("Wrote %d starred segments to %s", len(cache), path)
    return path

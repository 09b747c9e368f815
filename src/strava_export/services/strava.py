"""Strava API access for strava-export.

Wraps a ``stravalib.Client`` and converts its responses into the project's
own models. Upstream failures are reported as FetchError, and rate limiting
as RateLimitError, so the export pipeline can degrade a single item instead
of aborting the run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import requests
from stravalib import Client, exc

from strava_export.config import Config, save_tokens
from strava_export.errors import FetchError, RateLimitError
from strava_export.models.activity import Activity, DetailedActivity, TrackPoint
from strava_export.models.segment import StarredSegmentCacheEntry

logger = logging.getLogger("strava_export.strava")

ACTIVITY_STREAM_TYPES = ["latlng", "altitude", "time"]
SEGMENT_STREAM_TYPES = ["latlng", "altitude"]

# Refresh tokens that expire within this many seconds
TOKEN_REFRESH_MARGIN = 300


@contextmanager
def api_errors(what: str) -> Iterator[None]:
    """Translate stravalib and requests failures into export errors."""
    try:
        yield
    except exc.RateLimitExceeded as e:
        raise RateLimitError(f"Rate limit exceeded fetching {what}: {e}") from e
    except (exc.Fault, requests.exceptions.RequestException) as e:
        raise FetchError(f"Failed to fetch {what}: {e}") from e


def _plain(value: Any) -> Any:
    """Unwrap stravalib enum/root-model values into plain strings."""
    value = getattr(value, "root", value)
    return getattr(value, "value", value)


def _number(value: Any) -> float:
    if value is None:
        return 0.0
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    return float(getattr(value, "magnitude", value))


def activity_to_dict(strava_activity: Any) -> dict[str, Any]:
    """Convert a stravalib activity into the dictionary form of the Strava API.

    Args:
        strava_activity: Summary or detailed activity object from stravalib.

    Returns:
        Dictionary accepted by Activity.from_dict(). Laps and segment efforts
        are only included when the object carries them.
    """
    data: dict[str, Any] = {
        "id": strava_activity.id,
        "name": strava_activity.name,
        "type": _plain(strava_activity.type),
        "sport_type": _plain(getattr(strava_activity, "sport_type", None)),
        "start_date": strava_activity.start_date,
        "start_date_local": strava_activity.start_date_local,
        "timezone": str(strava_activity.timezone or ""),
        "distance": _number(strava_activity.distance),
        "moving_time": _number(strava_activity.moving_time),
        "elapsed_time": _number(strava_activity.elapsed_time),
        "total_elevation_gain": _number(strava_activity.total_elevation_gain),
        "commute": bool(strava_activity.commute),
        "gear_id": strava_activity.gear_id,
    }

    laps = getattr(strava_activity, "laps", None)
    efforts = getattr(strava_activity, "segment_efforts", None)
    if laps is not None or efforts is not None:
        data["description"] = getattr(strava_activity, "description", None)
        data["private_note"] = getattr(strava_activity, "private_note", None)
        data["laps"] = [
            {
                "lap_index": lap.lap_index,
                "start_index": lap.start_index,
                "elapsed_time": _number(lap.elapsed_time),
                "distance": _number(lap.distance),
            }
            for lap in laps or []
        ]
        data["segment_efforts"] = [
            {
                "id": effort.id,
                "name": effort.name,
                "elapsed_time": _number(effort.elapsed_time),
                "moving_time": _number(effort.moving_time),
                "distance": _number(effort.distance),
                "segment": {
                    "id": effort.segment.id if effort.segment else None,
                    "name": effort.segment.name if effort.segment else None,
                },
            }
            for effort in efforts or []
        ]
    return data


def streams_to_points(streams: dict[str, Any]) -> list[TrackPoint]:
    """Zip latlng, altitude and time streams into track points."""
    latlng = streams.get("latlng")
    if latlng is None or not latlng.data:
        return []
    altitude = streams["altitude"].data if "altitude" in streams else []
    times = streams["time"].data if "time" in streams else []

    points = []
    for i, (lat, lng) in enumerate(latlng.data):
        points.append(
            TrackPoint(
                lat=float(lat),
                lng=float(lng),
                altitude=float(altitude[i]) if i < len(altitude) else None,
                time=float(times[i]) if i < len(times) else None,
            )
        )
    return points


class StravaClient:
    """Activity source backed by the Strava API.

    The export pipeline only depends on the methods of this class, so tests
    can substitute any object providing them.
    """

    def __init__(self, config: Config) -> None:
        """Initialize the client.

        Args:
            config: Application configuration holding OAuth tokens.

        Raises:
            ValueError: If no access token is configured.
        """
        self.config = config
        if not config.strava.access_token and not config.strava.refresh_token:
            raise ValueError(
                "No Strava access token configured. Add access_token and refresh_token "
                "to the [strava] section of the configuration file."
            )
        self.client = Client(access_token=config.strava.access_token)
        self._refreshed = False
        self._token_lock = threading.Lock()

    def _token_current(self) -> bool:
        expires_at = self.config.strava.token_expires_at
        return self._refreshed or expires_at > time.time() + TOKEN_REFRESH_MARGIN

    def _ensure_token(self) -> None:
        """Refresh the access token when it is about to expire.

        Fetch workers call this concurrently; only one of them refreshes and
        rewrites the configuration file.
        """
        if self._token_current():
            return
        with self._token_lock:
            if not self._token_current():
                self._refresh_token()

    def _refresh_token(self) -> None:
        strava = self.config.strava
        if not (strava.refresh_token and strava.client_id and strava.client_secret):
            logger.debug("Access token expiring but cannot refresh without client credentials")
            self._refreshed = True
            return

        logger.info("Refreshing Strava access token")
        with api_errors("access token"):
            token = self.client.refresh_access_token(
                client_id=int(strava.client_id),
                client_secret=strava.client_secret,
                refresh_token=strava.refresh_token,
            )
        self.client.access_token = token["access_token"]
        save_tokens(
            self.config,
            token["access_token"],
            token["refresh_token"],
            int(token["expires_at"]),
        )
        self._refreshed = True

    def get_athlete(self) -> Any:
        """Get the authenticated athlete."""
        self._ensure_token()
        with api_errors("athlete"):
            return self.client.get_athlete()

    def get_athlete_bikes(self) -> dict[str, str]:
        """Get the athlete's bikes.

        Returns:
            Mapping of gear id to bike name.
        """
        athlete = self.get_athlete()
        return {bike.id: bike.name for bike in athlete.bikes or [] if bike.id}

    def get_athlete_profile(self) -> dict[str, Any]:
        """Get the athlete's name, location and bikes."""
        athlete = self.get_athlete()
        return {
            "id": athlete.id,
            "firstname": athlete.firstname or "",
            "lastname": athlete.lastname or "",
            "city": athlete.city or "",
            "state": athlete.state or "",
            "country": athlete.country or "",
            "bikes": {bike.id: bike.name for bike in athlete.bikes or [] if bike.id},
        }

    def get_activities(
        self,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int | None = None,
    ) -> list[Activity]:
        """List summary activities in a time range.

        Args:
            after: Only activities starting after this time.
            before: Only activities starting before this time.
            limit: Maximum number of activities.

        Returns:
            Summary activities in upstream order.
        """
        self._ensure_token()
        activities: list[Activity] = []
        with api_errors("activities"):
            for strava_activity in self.client.get_activities(
                after=after, before=before, limit=limit
            ):
                data = activity_to_dict(strava_activity)
                data.pop("laps", None)
                data.pop("segment_efforts", None)
                activities.append(Activity.from_dict(data))
        logger.debug("Listed %d activities", len(activities))
        return activities

    def get_detailed_activity(self, activity_id: int) -> DetailedActivity:
        """Fetch the detailed variant of an activity."""
        self._ensure_token()
        with api_errors(f"activity {activity_id}"):
            strava_activity = self.client.get_activity(activity_id)
        data = activity_to_dict(strava_activity)
        data.setdefault("laps", [])
        data.setdefault("segment_efforts", [])
        return DetailedActivity.from_dict(data)

    def get_activity_streams(self, activity_id: int) -> list[TrackPoint]:
        """Fetch the coordinate stream of an activity."""
        self._ensure_token()
        with api_errors(f"streams for activity {activity_id}"):
            streams = self.client.get_activity_streams(
                activity_id, types=ACTIVITY_STREAM_TYPES, resolution=None
            )
        return streams_to_points(streams or {})

    def get_segment_coordinates(self, segment_id: int) -> list[TrackPoint]:
        """Fetch the route of a segment."""
        self._ensure_token()
        with api_errors(f"streams for segment {segment_id}"):
            streams = self.client.get_segment_streams(segment_id, types=SEGMENT_STREAM_TYPES)
        return streams_to_points(streams or {})

    def get_starred_segments(self) -> list[StarredSegmentCacheEntry]:
        """Fetch the athlete's starred segments as cache entries."""
        self._ensure_token()
        entries = []
        with api_errors("starred segments"):
            for segment in self.client.get_starred_segments():
                high = _number(getattr(segment, "elevation_high", None))
                low = _number(getattr(segment, "elevation_low", None))
                entries.append(
                    StarredSegmentCacheEntry(
                        id=int(segment.id),
                        name=(segment.name or "").strip(),
                        distance=_number(segment.distance),
                        gradient=_number(segment.average_grade),
                        elevation_gain=max(0.0, high - low),
                        country=segment.country or "",
                        state=segment.state or "",
                    )
                )
        logger.debug("Fetched %d starred segments", len(entries))
        return entries

"""Command-line interface for strava-export.

Provides CLI commands for exporting Strava activities to KML, GPX and
bikelog XML, and for refreshing the starred segment cache.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from strava_export import __version__
from strava_export.config import DEFAULT_CONFIG_PATH, load_config
from strava_export.errors import ConfigError, StravaExportError, WriteError
from strava_export.lib.fmt import format_ms
from strava_export.lib.logging import setup_logging

if TYPE_CHECKING:
    from strava_export.config import Config

# Efforts shown per segment in the segments listing
MAX_LISTED_EFFORTS = 3


class JSONOutput:
    """Helper for JSON output formatting."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._data: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        """Set a value in the output."""
        self._data[key] = value

    def update(self, data: dict[str, Any]) -> None:
        """Update with multiple values."""
        self._data.update(data)

    def output(self) -> None:
        """Print JSON output if enabled."""
        if self.enabled:
            click.echo(json.dumps(self._data, indent=2, default=str))


# Custom context class to hold shared state
class Context:
    """CLI context holding shared configuration and state."""

    def __init__(self) -> None:
        self.config: Config | None = None
        self.verbose: int = 0
        self.quiet: bool = False
        self.json_output: bool = False
        self.output: JSONOutput = JSONOutput()

    def log(self, message: str, level: int = 0) -> None:
        """Log a message if verbosity allows.

        Args:
            message: Message to log.
            level: Required verbosity level (0=normal, 1=-v, 2=-vv).
        """
        if self.json_output:
            return
        if self.quiet and level == 0:
            return
        if level <= self.verbose or level == 0:
            click.echo(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        if self.json_output:
            self.output.set("error", message)
            self.output.set("status", "error")
        else:
            click.echo(f"Error: {message}", err=True)

    def fail(self, message: str, code: int) -> None:
        """Report an error and exit with the given code."""
        self.error(message)
        if self.json_output:
            self.output.output()
        sys.exit(code)

    def report(self, result: dict[str, Any], summary: str) -> None:
        """Print the result of a command."""
        if self.json_output:
            self.output.update({"status": "success", **result})
            self.output.output()
            return
        self.log(summary)
        errors = result.get("errors") or []
        if errors:
            self.log(f"Errors: {len(errors)}")
            for error in errors:
                self.log(f"  {error.get('phase', '')}: {error['error']}", 1)


pass_context = click.make_pass_decorator(Context, ensure=True)


def date_range_options(func: Any) -> Any:
    """Add --after/--before/--limit/--deadline options to a command."""
    func = click.option(
        "--deadline",
        type=float,
        help="Abandon outstanding Strava fetches after this many seconds",
    )(func)
    func = click.option(
        "--limit",
        type=int,
        help="Maximum number of activities to export",
    )(func)
    func = click.option(
        "--before",
        type=click.DateTime(),
        help="Only activities before this date (ISO 8601)",
    )(func)
    func = click.option(
        "--after",
        type=click.DateTime(),
        help="Only activities after this date (ISO 8601)",
    )(func)
    return func


def _service(ctx: Context) -> Any:
    from strava_export.services.export import ExportService

    if ctx.config is None:
        ctx.fail("Configuration not loaded", 1)
    try:
        return ExportService(ctx.config)
    except ValueError as e:
        ctx.fail(str(e), 2)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help=f"Configuration file path (default: {DEFAULT_CONFIG_PATH})",
)
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Data directory path for logs (default: ./data)",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv)",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress non-error output",
)
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output in JSON format",
)
@click.version_option(version=__version__, prog_name="strava-export")
@pass_context
def main(
    ctx: Context,
    config_path: Path | None,
    data_dir: Path | None,
    verbose: int,
    quiet: bool,
    json_output: bool,
) -> None:
    """Strava activity export CLI.

    Export your Strava activities to KML for Google Earth, to GPX, or to
    bikelog XML for filling a PDF form.
    """
    ctx.verbose = verbose
    ctx.quiet = quiet
    ctx.json_output = json_output
    ctx.output = JSONOutput(json_output)

    try:
        ctx.config = load_config(config_path)
    except (OSError, ValueError) as e:
        ctx.fail(f"Cannot load configuration: {e}", 2)

    if data_dir is not None:
        ctx.config.data.directory = data_dir

    setup_logging(ctx.config, verbose=verbose, quiet=quiet or json_output)


@main.command()
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@date_range_options
@click.option("--more", is_flag=True, help="Add distance, elevation and times to descriptions")
@click.option("--efforts", is_flag=True, help="Add starred segment efforts to descriptions")
@click.option("--laps", is_flag=True, help="Add lap markers")
@click.option("--imperial", is_flag=True, help="Use miles and feet")
@click.option(
    "--segments",
    type=click.Choice(["nested", "flat"]),
    default=None,
    help="Add starred segments, nested by country/state or in one folder",
)
@click.option(
    "--no-activities",
    is_flag=True,
    help="Omit activity tracks (useful with --segments)",
)
@pass_context
def kml(
    ctx: Context,
    output: Path,
    after: datetime | None,
    before: datetime | None,
    limit: int | None,
    deadline: float | None,
    more: bool,
    efforts: bool,
    laps: bool,
    imperial: bool,
    segments: str | None,
    no_activities: bool,
) -> None:
    """Export activities and starred segments to a KML file.

    OUTPUT must end in .kml.
    """
    from strava_export.views import ExportOptions

    if output.suffix.lower() != ".kml":
        ctx.fail(f"KML output must end in .kml: {output}", 2)
    if no_activities and not segments:
        ctx.fail("Nothing to export: use --segments with --no-activities", 2)

    options = ExportOptions(
        activities=not no_activities,
        segments=segments,
        laps=laps,
        more=more,
        efforts=efforts,
        imperial=imperial,
    )
    service = _service(ctx)
    try:
        result = service.export_geo(
            output, options, after=after, before=before, limit=limit, deadline=deadline
        )
    except WriteError as e:
        ctx.fail(str(e), 1)
    except ConfigError as e:
        ctx.fail(str(e), 2)
    except StravaExportError as e:
        ctx.fail(f"KML export failed: {e}", 1)

    ctx.report(
        result,
        f"Wrote {result['activities']} activities and {result['segments']} segments to {output}",
    )


@main.command()
@click.argument("output", type=click.Path(path_type=Path))
@date_range_options
@click.option("--laps", is_flag=True, help="Add lap waypoints")
@click.option("--more", is_flag=True, help="Add a description to each track")
@click.option("--efforts", is_flag=True, help="Add starred segment efforts to descriptions")
@click.option("--imperial", is_flag=True, help="Use miles and feet")
@pass_context
def gpx(
    ctx: Context,
    output: Path,
    after: datetime | None,
    before: datetime | None,
    limit: int | None,
    deadline: float | None,
    laps: bool,
    more: bool,
    efforts: bool,
    imperial: bool,
) -> None:
    """Export activities to GPX.

    An OUTPUT ending in .gpx receives all activities in one file. Any other
    OUTPUT is a directory that receives one GPX file per activity.
    """
    from strava_export.views import ExportOptions

    if output.suffix.lower() == ".kml":
        ctx.fail(f"Use the kml command for KML output: {output}", 2)

    options = ExportOptions(laps=laps, more=more, efforts=efforts, imperial=imperial)
    service = _service(ctx)
    try:
        result = service.export_geo(
            output, options, after=after, before=before, limit=limit, deadline=deadline
        )
    except WriteError as e:
        ctx.fail(str(e), 1)
    except ConfigError as e:
        ctx.fail(str(e), 2)
    except StravaExportError as e:
        ctx.fail(f"GPX export failed: {e}", 1)

    ctx.report(result, f"Wrote {result['activities']} activities to {output}")


@main.command()
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@date_range_options
@pass_context
def pdf(
    ctx: Context,
    output: Path,
    after: datetime | None,
    before: datetime | None,
    limit: int | None,
    deadline: float | None,
) -> None:
    """Export a bikelog XML file for import into a PDF form.

    Activities are combined per day, with up to two bike rides as events and
    all activities as notes.
    """
    service = _service(ctx)
    try:
        result = service.export_bikelog(
            output, after=after, before=before, limit=limit, deadline=deadline
        )
    except WriteError as e:
        ctx.fail(str(e), 1)
    except ConfigError as e:
        ctx.fail(str(e), 2)
    except StravaExportError as e:
        ctx.fail(f"Bikelog export failed: {e}", 1)

    ctx.report(result, f"Wrote {result['days_written']} days to {output}")


@main.command()
@click.option("--refresh", is_flag=True, help="Fetch starred segments from Strava first")
@date_range_options
@pass_context
def segments(
    ctx: Context,
    refresh: bool,
    after: datetime | None,
    before: datetime | None,
    limit: int | None,
    deadline: float | None,
) -> None:
    """List starred segments from the segment cache.

    With --after and/or --before, also fetch the activities of that range
    and list the fastest efforts on each starred segment.
    """
    from strava_export.models.segment import load_segment_cache

    if ctx.config is None:
        ctx.fail("Configuration not loaded", 1)

    service = None
    if refresh:
        service = _service(ctx)
        try:
            result = service.refresh_segments()
        except ConfigError as e:
            ctx.fail(str(e), 2)
        except StravaExportError as e:
            ctx.fail(f"Segment refresh failed: {e}", 1)
        except OSError as e:
            ctx.fail(f"Cannot write segment cache: {e}", 1)
        ctx.log(f"Cached {result['segments']} starred segments in {result['cache']}")

    with_efforts = after is not None or before is not None
    if with_efforts:
        service = service or _service(ctx)
        try:
            result = service.segment_efforts(
                after=after, before=before, limit=limit, deadline=deadline
            )
        except ConfigError as e:
            ctx.fail(str(e), 2)
        except StravaExportError as e:
            ctx.fail(f"Segment effort analysis failed: {e}", 1)
        entries = result["segments"]
    else:
        try:
            cache = load_segment_cache(Path(ctx.config.export.segments_cache).expanduser())
        except ConfigError as e:
            ctx.fail(str(e), 2)
        result = {}
        entries = [
            {"id": e.id, **e.to_dict()}
            for e in sorted(cache.entries(), key=lambda e: e.name.casefold())
        ]

    if ctx.json_output:
        ctx.output.update({"status": "success", **result, "segments": entries})
        ctx.output.output()
        return

    for entry in entries:
        region = ", ".join(part for part in (entry["state"], entry["country"]) if part)
        ctx.log(f"{entry['id']:>10}  {entry['name']} ({entry['distance'] / 1000:.2f} km) {region}")
        efforts = entry.get("efforts") or []
        if efforts:
            ctx.log(f"{'':12}Efforts: {len(efforts)}")
        for rank, effort in enumerate(efforts[:MAX_LISTED_EFFORTS], 1):
            ctx.log(f"{'':14}{rank}. {format_ms(effort['elapsed_time'])} on {effort['date']}")
    if with_efforts:
        ctx.report(result, f"{len(entries)} starred segments")
    else:
        ctx.log(f"{len(entries)} starred segments")


@main.command()
@pass_context
def athlete(ctx: Context) -> None:
    """Show the athlete profile and bikes.

    Each bike is listed with its gear id and, when one is configured in
    [export].bikes, the label used for it in the bikelog.
    """
    service = _service(ctx)
    try:
        result = service.athlete()
    except StravaExportError as e:
        ctx.fail(f"Failed to retrieve athlete information: {e}", 1)

    if ctx.json_output:
        ctx.output.update({"status": "success", **result})
        ctx.output.output()
        return

    profile = result["athlete"]
    rows = [
        ("Name:", f"{profile['firstname']} {profile['lastname']}".strip()),
        ("ID:", str(profile["id"])),
        ("City:", profile["city"] or "Not specified"),
        ("State:", profile["state"] or "Not specified"),
        ("Country:", profile["country"] or "Not specified"),
    ]
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        ctx.log(f"{label:<{width}} {value}")

    bikes = result["bikes"]
    if bikes:
        ctx.log("Bikes:")
        name_width = max(len(bike["name"]) for bike in bikes) + 1
        id_width = max(len(str(bike["id"])) for bike in bikes)
        for bike in bikes:
            line = f"  {bike['name'] + ':':<{name_width}} {bike['id']:<{id_width}} {bike['label']}"
            ctx.log(line.rstrip())


if __name__ == "__main__":
    main()

"""Entry point for running strava-export as a module.

Usage:
    python -m strava_export [command] [options]
"""

from strava_export.cli import main

if __name__ == "__main__":
    main()

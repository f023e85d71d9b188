"""
Command-line interface for link-relay.

Usage:
    link-relay [start]   # Run the relay (add --daemon to background it)
    link-relay stop      # Stop the running relay
    link-relay restart   # Stop, then start in the background
    link-relay pid       # Print the running relay's pid

Exit codes:
    0  success / stopped cleanly
    1  startup failure, or `pid` with nothing running
    3  another instance already holds the lock
    4  the running instance did not stop in time
"""

import asyncio
import sys
from pathlib import Path

import click

from linkrelay import __version__
from linkrelay.config.settings import get_settings, resolve_settings
from linkrelay.daemon.supervisor import Supervisor
from linkrelay.errors import (
    EXIT_FAILURE,
    EXIT_LOCKED,
    EXIT_OK,
    EXIT_STOP_FAILED,
    InstanceLockedError,
    StartupError,
    StopFailedError,
)
from linkrelay.observability.logging import VERBOSITY_LEVELS, setup_logging
from linkrelay.relay.buckets import parse_checkpoint
from linkrelay.relay.service import preflight, run_relay

MODES = ["start", "stop", "restart", "pid"]


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("mode", required=False, default="start", type=click.Choice(MODES))
@click.option("--timestamp", help="Resume point: bucket id (YYYYMMDDHHMM) or ISO 8601 time")
@click.option("--daemon/--no-daemon", default=None, help="Detach and run in the background")
@click.option("--timeout", type=float, help="Seconds to wait before polling for a new bucket")
@click.option(
    "--basedir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for log, lock, state and cache files [default: ~/.link-relay]",
)
@click.option(
    "--verbosity",
    type=click.Choice(list(VERBOSITY_LEVELS)),
    help="Log verbosity",
)
@click.option("--source-url", help="Base URL of the source activity stream")
@click.option("--source-username", help="Source stream username")
@click.option("--source-password", help="Source stream password")
@click.option("--destination-url", help="URL activities are published to")
@click.option("--destination-username", help="Destination feed username")
@click.option("--destination-password", help="Destination feed password")
@click.option("--bitly-token", help="bitly API access token")
@click.option("--keyword", help="Server-side keyword filter for fetched buckets")
@click.option("--max-activities", type=click.IntRange(min=1), help="Cap on activities relayed per bucket")
@click.option("--mock", is_flag=True, help="Relay a synthetic in-memory stream")
@click.version_option(__version__, prog_name="link-relay")
def main(
    mode: str,
    timestamp: str | None,
    daemon: bool | None,
    timeout: float | None,
    basedir: Path | None,
    verbosity: str | None,
    source_url: str | None,
    source_username: str | None,
    source_password: str | None,
    destination_url: str | None,
    destination_username: str | None,
    destination_password: str | None,
    bitly_token: str | None,
    keyword: str | None,
    max_activities: int | None,
    mock: bool,
) -> None:
    """Relay an activity stream, expanding shortened links."""
    try:
        settings = resolve_settings(
            get_settings(),
            {
                "basedir": basedir,
                "poll_timeout_seconds": timeout,
                "log_level": VERBOSITY_LEVELS[verbosity] if verbosity else None,
                "source_url": source_url,
                "source_username": source_username,
                "source_password": source_password,
                "destination_url": destination_url,
                "destination_username": destination_username,
                "destination_password": destination_password,
                "bitly_access_token": bitly_token,
                "stream_keyword": keyword,
                "max_activities_per_bucket": max_activities,
            },
        )
    except ValueError as e:
        click.echo(f"link-relay: invalid configuration: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    setup_logging(settings.log_level)
    supervisor = Supervisor(settings, echo=click.echo)

    if mode == "pid":
        pid = supervisor.running_pid()
        if pid is None:
            click.echo("link-relay: not running", err=True)
            sys.exit(EXIT_FAILURE)
        click.echo(pid)
        sys.exit(EXIT_OK)

    if mode in ("stop", "restart"):
        try:
            supervisor.stop()
        except StopFailedError as e:
            click.echo(f"link-relay: {e}", err=True)
            sys.exit(EXIT_STOP_FAILED)
        if mode == "stop":
            sys.exit(EXIT_OK)

    if daemon is None:
        daemon = settings.daemon or mode == "restart"

    try:
        checkpoint = parse_checkpoint(timestamp) if timestamp else None
    except ValueError:
        click.echo(f"link-relay: bad --timestamp {timestamp!r}", err=True)
        sys.exit(EXIT_FAILURE)

    try:
        supervisor.ensure_basedir()
        supervisor.acquire_lock()
        asyncio.run(preflight(settings, use_mock=mock))
        state = supervisor.start(checkpoint=checkpoint, daemon=daemon)
    except InstanceLockedError as e:
        click.echo(e.pid if e.pid is not None else str(e))
        sys.exit(EXIT_LOCKED)
    except StartupError as e:
        click.echo(f"link-relay: {e}", err=True)
        sys.exit(EXIT_FAILURE)

    asyncio.run(run_relay(settings, state, supervisor.store, use_mock=mock))
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()

"""Shared utilities for CLI commands."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

from btagger.evaluator import evaluate, evaluate_periods
from btagger.object_store import EndpointOverride
from btagger.observability import ObservabilitySink
from btagger.periods import build_periods
from config import Config, apply_overrides, load_config


def load_app_config(ctx: click.Context) -> Config:
    """Load configuration and apply the global command line overrides.

    Args:
        ctx: Click context holding config_path and schedule overrides

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file or an override is invalid
    """
    config = load_config(ctx.obj.get('config_path'))
    return apply_overrides(config, **ctx.obj.get('overrides', {}))


def setup_logging(config: Config, verbose: bool = False):
    """Set up logging on stderr, keeping stdout for command output.

    Args:
        config: Application configuration
        verbose: Whether to show debug logging on the console
    """
    root_logger = logging.getLogger()
    root_logger.handlers = []

    console_level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.WARNING)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter('LOG: %(levelname)s - %(message)s'))
    root_logger.addHandler(console_handler)

    if config.logging.file:
        log_file = Path(config.logging.file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(file_handler)

    root_logger.setLevel(logging.DEBUG)

    # Quiet all libraries
    logging.getLogger('urllib3').setLevel(logging.ERROR)


def handle_error(error: Exception, verbose: bool = False):
    """Handle and display errors consistently.

    Args:
        error: Exception to handle
        verbose: Whether to show full traceback
    """
    click.echo(f"Error: {error}", err=True)
    if verbose:
        import traceback
        click.echo(traceback.format_exc(), err=True)
    sys.exit(1)


def resolve_now(at: Optional[datetime] = None) -> datetime:
    """Current UTC time, or ``at`` interpreted as UTC when naive."""
    if at is None:
        return datetime.now(timezone.utc)
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)


def periods_for(config: Config):
    schedule = config.schedule
    return build_periods(
        day_offset_hours=schedule.day_offset_in_hours,
        minute_offset=schedule.minutes_offset_from_hour,
        every_n_hours=schedule.every_n_hours,
    )


def compute_tag_set(config: Config, now: datetime, sink: Optional[ObservabilitySink] = None):
    """Tag set for a run at ``now`` under the configured schedule."""
    return evaluate(now, config.schedule.lag_window_seconds, periods_for(config), sink)


def compute_decisions(config: Config, now: datetime, sink: Optional[ObservabilitySink] = None):
    return evaluate_periods(now, config.schedule.lag_window_seconds, periods_for(config), sink)


def resolve_endpoint(config: Config, url: Optional[str], access_id: Optional[str],
                     secret_key: Optional[str]) -> EndpointOverride:
    """Endpoint override from command line values, falling back to the config file."""
    return EndpointOverride(
        url=url or config.s3.url,
        access_id=access_id or config.s3.access_id,
        secret_key=secret_key or config.s3.secret_key,
    )


def format_delta(seconds: float) -> str:
    """Format a signed duration as e.g. ``-2h 5m`` or ``+3d 4h``."""
    sign = '-' if seconds < 0 else '+'
    seconds = abs(int(seconds))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes = seconds // 60
    if days:
        return f"{sign}{days}d {hours}h"
    if hours:
        return f"{sign}{hours}h {minutes}m"
    return f"{sign}{minutes}m"

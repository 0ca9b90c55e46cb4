"""Configuration management commands."""

from pathlib import Path

import click

from config import create_default_config
from cli.utils import (
    load_app_config,
    handle_error,
)


def register_commands(cli):
    """Register config commands with main CLI."""

    @cli.group('config')
    @click.pass_context
    def config_group(ctx):
        """Configuration management commands.

        Initialize and inspect the configuration file.
        """
        pass

    @config_group.command('init')
    @click.pass_context
    def init_config(ctx):
        """Create a default configuration file.

        Writes btagger.json (or the file given with --config) holding the
        schedule, S3 endpoint, tool and logging defaults. Endpoint
        credentials are written as $VARIABLE references, expanded from the
        environment at load time.

        Examples:
            btagger config init
            btagger --config /etc/btagger.json config init
        """
        config_path = ctx.obj['config_path'] or 'btagger.json'

        if Path(config_path).exists():
            click.echo(f"Configuration file already exists: {config_path}")
            if not click.confirm("Overwrite existing configuration?"):
                return

        create_default_config(config_path)
        click.echo(f"✓ Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("  1. Adjust the schedule to match the cron job that runs btagger")
        click.echo("  2. Export S3_ENDPOINT, S3_ACCESS_ID and S3_SECRET_KEY for a self-hosted endpoint,")
        click.echo("     or remove them to use the ambient AWS credentials")
        click.echo(f"  3. Check the result with: btagger --config {config_path} config show")

    @config_group.command('show')
    @click.pass_context
    def show_config(ctx):
        """Display the effective configuration, including command line overrides."""
        try:
            config = load_app_config(ctx)
            schedule = config.schedule

            click.echo(f"Configuration file: {ctx.obj['config_path'] or '(defaults)'}")

            click.echo("\nSchedule:")
            click.echo(f"  Every n hours:       {schedule.every_n_hours}")
            click.echo(f"  Minutes offset:      {schedule.minutes_offset_from_hour}")
            click.echo(f"  Day offset (hours):  {schedule.day_offset_in_hours}")
            click.echo(f"  Lag window:          {schedule.lag_window_in_minutes} minutes")
            click.echo(f"  Timestamp format:    {schedule.format_timestamp}")

            endpoint = config.s3.to_override()
            click.echo("\nS3:")
            click.echo(f"  Endpoint:  {config.s3.url or '(default)'}")
            click.echo(f"  Access id: {config.s3.access_id or '-'}")
            click.echo(f"  Secret:    {'set' if config.s3.secret_key else '-'}")
            click.echo(f"  Region:    {config.s3.region or '(ambient)'}")
            click.echo(f"  Override active: {'yes' if endpoint.is_complete else 'no'}")

            click.echo("\nTools:")
            click.echo(f"  aws:     {config.tools.aws}")
            click.echo(f"  zstd:    {config.tools.zstd} (level {config.tools.compression_level})")
            click.echo(f"  surreal: {config.tools.surreal}")
            click.echo(f"  tikv-br: {config.tools.tikv_br}")

            click.echo("\nLogging:")
            click.echo(f"  Level: {config.logging.level}")
            click.echo(f"  File:  {config.logging.file or '-'}")

        except Exception as e:
            handle_error(e, ctx.obj['verbose'])

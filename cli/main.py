"""Main CLI entry point - Root command group with global options."""

import click

from version import __version__


@click.group()
@click.option('--config', '-c', default=None, help='Configuration file path (JSON)')
@click.option('--every-n-hours', '-n', type=int, default=None,
              help='Hour of the day backups are matched against [default: 4]')
@click.option('--minutes-offset-from-hour', '-m', type=int, default=None,
              help='Minutes past the hour the backup job fires [default: 30]')
@click.option('--day-offset-in-hours', '-d', type=int, default=None,
              help='Hours added to the scheduled hour [default: 0]')
@click.option('--lag-window-in-minutes', '-l', type=int, default=None,
              help='Matching window for clock skew and job trigger delay [default: 20]')
@click.option('--format-timestamp', '-f', default=None,
              help='strftime pattern used in object keys [default: %Y-%m-%d.%H-%M]')
@click.option('--verbose', '-v', is_flag=True, help='Show detailed logging on stderr')
@click.version_option(version=__version__, prog_name='btagger')
@click.pass_context
def cli(ctx, config, every_n_hours, minutes_offset_from_hour, day_offset_in_hours,
        lag_window_in_minutes, format_timestamp, verbose):
    """btagger - Retention tags for database backups in S3.

    Works out which retention periods (nightly, weekly, monthly, quarterly,
    yearly) the current run falls on, then runs a backup and tags the
    uploaded objects so bucket lifecycle rules can expire them.

    Examples:
        # Print the tag set for this moment
        btagger tags

        # Export a SurrealDB database, compress, upload and tag it
        btagger surrealdb --bucket backups --namespace prod --database app

        # Raw TiKV backup through a self-hosted S3 endpoint
        btagger tikv --bucket backups --pd pd:2379 \\
            --endpoint http://minio:9000 --access-id KEY --secret-key SECRET
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose
    ctx.obj['overrides'] = {
        'every_n_hours': every_n_hours,
        'minutes_offset_from_hour': minutes_offset_from_hour,
        'day_offset_in_hours': day_offset_in_hours,
        'lag_window_in_minutes': lag_window_in_minutes,
        'format_timestamp': format_timestamp,
    }


def register_all_commands():
    """Register all command modules with the main CLI."""
    from cli import (
        config_commands,
        tags_commands,
        backup_commands,
    )

    config_commands.register_commands(cli)
    tags_commands.register_commands(cli)
    backup_commands.register_commands(cli)


# Register all commands when module is imported
register_all_commands()

"""Tag set commands: print the tags for this run and inspect the period catalog."""

import click
from tabulate import tabulate

from btagger.observability import LoggingSink
from cli.utils import (
    load_app_config,
    setup_logging,
    handle_error,
    resolve_now,
    compute_decisions,
    compute_tag_set,
    periods_for,
    format_delta,
)


def _decision_rows(decisions):
    return [
        [
            d.period.name,
            d.period.schedule_expression,
            d.adjusted_occurrence.isoformat(),
            format_delta(d.difference.total_seconds()),
            'yes' if d.matched else 'no',
        ]
        for d in decisions
    ]


def register_commands(cli):
    """Register tag commands with main CLI."""

    @cli.command('tags')
    @click.option('--at', type=click.DateTime(formats=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M']),
                  help='Evaluate as of this UTC time instead of now')
    @click.option('--explain', is_flag=True, help='Show how each period was decided (on stderr)')
    @click.pass_context
    def tags(ctx, at, explain):
        """Print the tag set document for the current run.

        Only the JSON document is written to stdout, so the output can be
        passed straight to `aws s3api put-object-tagging --tagging`.

        Examples:
            btagger tags
            btagger -l 30 tags --explain
            btagger tags --at 2025-07-01T04:30
        """
        verbose = ctx.obj['verbose']

        try:
            config = load_app_config(ctx)
            setup_logging(config, verbose)
            now = resolve_now(at)

            if explain:
                decisions = compute_decisions(config, now)
                click.echo(f"Now: {now.isoformat()}  lag window: {config.schedule.lag_window_in_minutes}m", err=True)
                headers = ['Period', 'Schedule', 'Boundary', 'Offset', 'Match']
                click.echo(tabulate(_decision_rows(decisions), headers=headers, tablefmt='simple'), err=True)

            tag_set = compute_tag_set(config, now, LoggingSink())
            click.echo(tag_set.to_json())

        except Exception as e:
            handle_error(e, verbose)

    @cli.command('periods')
    @click.option('--at', type=click.DateTime(formats=['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M']),
                  help='Evaluate as of this UTC time instead of now')
    @click.pass_context
    def periods(ctx, at):
        """Show the retention period catalog and the next boundary of each period.

        Periods whose schedule expression is invalid for the configured
        offsets are listed as skipped.
        """
        verbose = ctx.obj['verbose']

        try:
            config = load_app_config(ctx)
            setup_logging(config, verbose)
            now = resolve_now(at)

            decisions = {d.period.name: d for d in compute_decisions(config, now)}
            rows = []
            for period in periods_for(config):
                decision = decisions.get(period.name)
                if decision is None:
                    rows.append([period.name, period.schedule_expression, '-', '-', 'skipped'])
                else:
                    rows.extend(_decision_rows([decision]))

            click.echo(f"\nNow: {now.isoformat()}")
            click.echo(f"Lag window: {config.schedule.lag_window_in_minutes} minutes\n")
            headers = ['Period', 'Schedule', 'Boundary', 'Offset', 'Match']
            click.echo(tabulate(rows, headers=headers, tablefmt='grid'))

        except Exception as e:
            handle_error(e, verbose)

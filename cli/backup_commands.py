"""Backup commands: run a backup pipeline and tag what it uploads."""

import shlex
import sys

import click

from btagger.observability import LoggingSink
from btagger.pipeline import (
    BackupKind,
    BackupOrchestrator,
    BackupTarget,
    SurrealSource,
    TikvSource,
    raw_backup_prefix,
    streamed_export_key,
)
from btagger.runner import DryRunRunner, SubprocessRunner
from cli.utils import (
    load_app_config,
    setup_logging,
    handle_error,
    resolve_now,
    compute_tag_set,
    resolve_endpoint,
)


def s3_options(func):
    """Options shared by every backup kind."""
    func = click.option('--secret-key', envvar='BTAGGER_S3_SECRET_KEY',
                        help='Secret key for the S3-compatible endpoint')(func)
    func = click.option('--access-id', envvar='BTAGGER_S3_ACCESS_ID',
                        help='Access key id for the S3-compatible endpoint')(func)
    func = click.option('--endpoint', envvar='BTAGGER_S3_ENDPOINT',
                        help='S3-compatible endpoint URL (used only with --access-id and --secret-key)')(func)
    func = click.option('--bucket', '-b', required=True, envvar='BTAGGER_BUCKET',
                        help='Destination bucket')(func)
    func = click.option('--dry-run', is_flag=True,
                        help='Print the commands that would run without running them')(func)
    return func


def _run_backup(ctx, kind, bucket, storage_key, source, endpoint, access_id, secret_key, dry_run):
    """Evaluate tags, run the pipeline for ``kind`` and report the outcome."""
    verbose = ctx.obj['verbose']

    config = load_app_config(ctx)
    setup_logging(config, verbose)
    sink = LoggingSink()

    now = resolve_now()
    tag_set = compute_tag_set(config, now, sink)
    click.echo(f"Tags: {', '.join(tag_set.keys)}")

    runner = DryRunRunner() if dry_run else SubprocessRunner()
    orchestrator = BackupOrchestrator(runner, config.tools, sink, region=config.s3.region)
    target = BackupTarget(
        kind=kind,
        bucket=bucket,
        storage_key_prefix=storage_key(config, now),
        endpoint=resolve_endpoint(config, endpoint, access_id, secret_key),
    )

    result = orchestrator.run(target, source, tag_set)

    if dry_run:
        click.echo("\nCommands (dry run):")
        for argv in runner.commands:
            click.echo(f"  {shlex.join(argv)}")
        return result

    for key in result.tagged:
        click.echo(f"✓ s3://{bucket}/{key}")
    for key, error in result.failures.items():
        click.echo(f"✗ {error}", err=True)

    if result.failures:
        click.echo(f"\n{len(result.failures)} of {len(result.keys)} object(s) could not be tagged", err=True)
        sys.exit(1)

    click.echo(f"\n✅ Backup complete: {len(result.tagged)} object(s) tagged")
    return result


def register_commands(cli):
    """Register backup commands with main CLI."""

    @cli.command('surrealdb')
    @s3_options
    @click.option('--address', default='ws://localhost:8000', envvar='SURREAL_ADDRESS',
                  show_default=True, help='SurrealDB connection URL')
    @click.option('--username', envvar='SURREAL_USER', help='SurrealDB user')
    @click.option('--password', envvar='SURREAL_PASS', help='SurrealDB password')
    @click.option('--namespace', required=True, help='Namespace to export (also the key prefix)')
    @click.option('--database', required=True, help='Database to export')
    @click.pass_context
    def surrealdb(ctx, dry_run, bucket, endpoint, access_id, secret_key,
                  address, username, password, namespace, database):
        """Export a SurrealDB database to one compressed, tagged object.

        Runs `surreal export | zstd | aws s3 cp -` as a live pipeline, so no
        local disk space is needed, then tags the object.

        The object key is NAMESPACE/<timestamp>.zst.

        Examples:
            btagger surrealdb --bucket backups --namespace prod --database app

            # Self-hosted S3 (credentials are passed only to the child processes)
            btagger surrealdb -b backups --namespace prod --database app \\
                --endpoint http://minio:9000 --access-id KEY --secret-key SECRET
        """
        try:
            source = SurrealSource(address, namespace, database, username, password)
            _run_backup(
                ctx, BackupKind.STREAMED_EXPORT, bucket,
                lambda config, now: streamed_export_key(namespace, now, config.schedule.format_timestamp),
                source, endpoint, access_id, secret_key, dry_run,
            )
        except Exception as e:
            handle_error(e, ctx.obj['verbose'])

    @cli.command('tikv')
    @s3_options
    @click.option('--pd', 'pd_address', required=True, envvar='TIKV_PD',
                  help='Placement driver address, e.g. pd:2379')
    @click.option('--prefix', default='tikv', show_default=True,
                  help='Key prefix; backups go under PREFIX/<timestamp>')
    @click.pass_context
    def tikv(ctx, dry_run, bucket, endpoint, access_id, secret_key, pd_address, prefix):
        """Raw-backup a TiKV cluster and tag every object it writes.

        tikv-br may write any number of objects, so they are listed after
        the backup finishes and tagged one at a time. A key that fails to
        tag does not stop the others; the command exits non-zero afterwards.

        Examples:
            btagger tikv --bucket backups --pd pd:2379
            btagger tikv --bucket backups --pd pd:2379 --prefix cluster-a --dry-run
        """
        try:
            _run_backup(
                ctx, BackupKind.DISTRIBUTED_RAW, bucket,
                lambda config, now: raw_backup_prefix(prefix, now, config.schedule.format_timestamp),
                TikvSource(pd_address), endpoint, access_id, secret_key, dry_run,
            )
        except Exception as e:
            handle_error(e, ctx.obj['verbose'])

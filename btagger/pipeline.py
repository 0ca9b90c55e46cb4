"""Backup pipelines: produce backup objects, then tag them for retention.

Two kinds of backup are supported:

- Streamed export (SurrealDB): ``surreal export | zstd | aws s3 cp -``
  produces exactly one object whose key is known before anything starts.
- Distributed raw backup (TiKV): ``tikv-br backup raw`` writes any number of
  objects under a prefix, which are listed afterwards and tagged one by one.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from btagger.errors import ExternalProcessError, TaggingError
from btagger.object_store import EndpointOverride, ObjectStoreClient
from btagger.observability import NullSink, ObservabilitySink
from btagger.runner import PipedProcess, ProcessRunner
from btagger.tags import TagSet
from config import ToolsConfig

logger = logging.getLogger(__name__)

COMPRESSED_EXTENSION = "zst"


class BackupKind(Enum):
    STREAMED_EXPORT = "streamed-export"
    DISTRIBUTED_RAW = "distributed-raw"


class PipelineState(Enum):
    PENDING = "pending"
    EXPORTING = "exporting"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    BACKING_UP = "backing-up"
    LISTING = "listing"
    TAGGING = "tagging"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BackupTarget:
    """Where a backup goes.

    Attributes:
        kind: Which pipeline produces the objects
        bucket: Destination bucket
        storage_key_prefix: Object key for streamed exports; key prefix for
            distributed raw backups
        endpoint: Optional S3-compatible endpoint override
    """
    kind: BackupKind
    bucket: str
    storage_key_prefix: str
    endpoint: EndpointOverride = field(default_factory=EndpointOverride)


@dataclass(frozen=True)
class SurrealSource:
    """SurrealDB database exported as one stream."""
    address: str
    namespace: str
    database: str
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class TikvSource:
    """TiKV cluster reached through its placement driver."""
    pd_address: str


@dataclass
class BackupResult:
    """Outcome of one pipeline run."""
    kind: BackupKind
    bucket: str
    state: PipelineState = PipelineState.PENDING
    keys: List[str] = field(default_factory=list)
    tagged: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.state == PipelineState.DONE and not self.failures


def format_timestamp(moment: datetime, pattern: str) -> str:
    return moment.strftime(pattern)


def streamed_export_key(namespace: str, moment: datetime, pattern: str) -> str:
    """Object key for a compressed export, e.g. ``prod/2025-07-01.04-30.zst``."""
    return f"{namespace}/{format_timestamp(moment, pattern)}.{COMPRESSED_EXTENSION}"


def raw_backup_prefix(prefix: str, moment: datetime, pattern: str) -> str:
    """Key prefix a distributed raw backup writes under."""
    stamp = format_timestamp(moment, pattern)
    prefix = prefix.strip('/')
    return f"{prefix}/{stamp}" if prefix else stamp


def listing_prefix(prefix: str) -> str:
    """Prefix that matches only keys inside the backup directory, not its siblings."""
    return f"{prefix.rstrip('/')}/"


class BackupOrchestrator:
    """Runs one backup per call and tags what it produced."""

    def __init__(self, runner: ProcessRunner, tools: Optional[ToolsConfig] = None,
                 sink: Optional[ObservabilitySink] = None, region: Optional[str] = None):
        """Initialize the orchestrator.

        Args:
            runner: Executes every external command
            tools: Executable names and compression level
            sink: Receives state transitions and tagging events
            region: AWS region for object-store commands, if set
        """
        self.runner = runner
        self.tools = tools or ToolsConfig()
        self.sink = sink or NullSink()
        self.region = region
        self.state = PipelineState.PENDING

    def store_for(self, target: BackupTarget) -> ObjectStoreClient:
        return ObjectStoreClient(self.runner, target.endpoint, region=self.region,
                                 aws_command=self.tools.aws, sink=self.sink)

    def _transition(self, result: BackupResult, state: PipelineState, **fields) -> None:
        self.state = state
        result.state = state
        self.sink.record('pipeline_state', {'kind': result.kind.value, 'state': state.value, **fields})

    def run(self, target: BackupTarget, source, tag_set: TagSet) -> BackupResult:
        """Run the pipeline matching ``target.kind``."""
        if target.kind == BackupKind.STREAMED_EXPORT:
            return self.run_streamed_export(target, source, tag_set)
        return self.run_distributed_raw(target, source, tag_set)

    # ------------------------------------------------------------------
    # Streamed export
    # ------------------------------------------------------------------

    def export_command(self, source: SurrealSource) -> List[str]:
        return [self.tools.surreal, 'export',
                '--conn', source.address,
                '--ns', source.namespace,
                '--db', source.database,
                '-']

    def export_env(self, source: SurrealSource) -> Optional[Dict[str, str]]:
        """Credentials travel in the environment so they stay out of ``ps``."""
        if not source.username and not source.password:
            return None
        env = dict(os.environ)
        if source.username:
            env['SURREAL_USER'] = source.username
        if source.password:
            env['SURREAL_PASS'] = source.password
        return env

    def compress_command(self) -> List[str]:
        return [self.tools.zstd, '-q', '-c', f'-{self.tools.compression_level}']

    def run_streamed_export(self, target: BackupTarget, source: SurrealSource,
                            tag_set: TagSet) -> BackupResult:
        """Export, compress and upload one object, then tag it.

        Raises:
            ExternalProcessError: If any stage fails; tagging is skipped
            TaggingError: If the uploaded object cannot be tagged
        """
        result = BackupResult(BackupKind.STREAMED_EXPORT, target.bucket)
        key = target.storage_key_prefix
        result.keys.append(key)
        store = self.store_for(target)

        store.ensure_bucket(target.bucket)

        stages = [
            ('export', self.export_command(source), self.export_env(source)),
            ('compress', self.compress_command(), None),
            ('upload', store.upload_command(target.bucket, key), store.command_env()),
        ]

        self._transition(result, PipelineState.EXPORTING, key=key)
        try:
            statuses = self._run_chain(stages)
        except ExternalProcessError as e:
            self._transition(result, PipelineState.FAILED, stage=e.stage)
            raise

        for (stage, argv, _), (returncode, stderr), next_state in zip(
                stages, statuses,
                (PipelineState.COMPRESSING, PipelineState.UPLOADING, PipelineState.TAGGING)):
            if returncode != 0:
                self._transition(result, PipelineState.FAILED, stage=stage, status=returncode)
                if stage != 'upload':
                    logger.warning(f"A partial object may remain at s3://{target.bucket}/{key}")
                raise ExternalProcessError(stage, argv, returncode, stderr)
            self._transition(result, next_state)

        logger.info(f"✓ Uploaded s3://{target.bucket}/{key}")

        try:
            store.put_tagging(target.bucket, key, tag_set)
        except TaggingError:
            self._transition(result, PipelineState.FAILED, stage='tagging')
            raise
        result.tagged.append(key)

        self._transition(result, PipelineState.DONE)
        return result

    def _run_chain(self, stages) -> List[tuple]:
        """Run stages connected stdout-to-stdin and wait for all of them.

        The tail is started first so each stage writes into a pipe whose
        reader already exists. Waits run tail first as well.

        If a stage cannot be started, the stages already running are killed
        before their input is closed, so the upload never sees a clean end of
        stream and no empty object is committed.

        Returns:
            (returncode, stderr) per stage, in pipeline order

        Raises:
            ExternalProcessError: If a stage cannot be started, with the
                stage name as ``stage``
        """
        pipes = [os.pipe() for _ in range(len(stages) - 1)]
        open_fds = {fd for pair in pipes for fd in pair}
        handles: List[Optional[PipedProcess]] = [None] * len(stages)

        def close(fd):
            if fd in open_fds:
                os.close(fd)
                open_fds.discard(fd)

        try:
            for index in reversed(range(len(stages))):
                stage, argv, env = stages[index]
                stdin = pipes[index - 1][0] if index > 0 else None
                stdout = pipes[index][1] if index < len(stages) - 1 else None
                try:
                    handles[index] = self.runner.spawn_piped(argv, stdin=stdin, stdout=stdout, env=env)
                except ExternalProcessError as e:
                    raise ExternalProcessError(stage, e.argv, e.returncode, e.stderr) from e
                # The child holds its own copies now
                if stdin is not None:
                    close(stdin)
                if stdout is not None:
                    close(stdout)
        except ExternalProcessError:
            started = [handle for handle in handles if handle is not None]
            for handle in started:
                handle.terminate()
            for fd in list(open_fds):
                close(fd)
            for handle in started:
                handle.wait()
            raise

        returncodes = [0] * len(stages)
        for index in reversed(range(len(stages))):
            returncodes[index] = handles[index].wait()

        return [(returncode, handle.stderr_text()) for returncode, handle in zip(returncodes, handles)]

    # ------------------------------------------------------------------
    # Distributed raw backup
    # ------------------------------------------------------------------

    def raw_backup_command(self, target: BackupTarget, source: TikvSource) -> List[str]:
        argv = [self.tools.tikv_br, 'backup', 'raw',
                '--pd', source.pd_address,
                '--storage', f's3://{target.bucket}/{target.storage_key_prefix}']
        if target.endpoint.is_complete:
            argv += ['--s3.endpoint', target.endpoint.url]
        if self.region:
            argv += ['--s3.region', self.region]
        return argv

    def run_distributed_raw(self, target: BackupTarget, source: TikvSource,
                            tag_set: TagSet) -> BackupResult:
        """Back up a cluster under a prefix, then tag every object written.

        A key that fails to tag is recorded in ``result.failures`` and the
        remaining keys are still attempted.

        Raises:
            ExternalProcessError: If the backup tool or the listing fails
            ListParseError: If the listing output cannot be parsed
        """
        result = BackupResult(BackupKind.DISTRIBUTED_RAW, target.bucket)
        store = self.store_for(target)

        store.ensure_bucket(target.bucket)

        argv = self.raw_backup_command(target, source)
        self._transition(result, PipelineState.BACKING_UP, prefix=target.storage_key_prefix)
        try:
            backup = self.runner.run(argv, env=store.command_env())
        except ExternalProcessError as e:
            self._transition(result, PipelineState.FAILED, stage='backup')
            raise ExternalProcessError('backup', e.argv, e.returncode, e.stderr) from e
        if not backup.ok:
            self._transition(result, PipelineState.FAILED, stage='backup', status=backup.returncode)
            raise ExternalProcessError('backup', argv, backup.returncode, backup.stderr_text)

        self._transition(result, PipelineState.LISTING)
        try:
            result.keys = store.list_objects(target.bucket, listing_prefix(target.storage_key_prefix))
        except Exception:
            self._transition(result, PipelineState.FAILED, stage='listing')
            raise

        if not result.keys:
            logger.warning(f"Backup wrote no objects under s3://{target.bucket}/{target.storage_key_prefix}")

        self._transition(result, PipelineState.TAGGING, objects=len(result.keys))
        for key in result.keys:
            try:
                store.put_tagging(target.bucket, key, tag_set)
            except TaggingError as e:
                logger.error(str(e))
                result.failures[key] = str(e)
                continue
            result.tagged.append(key)

        self._transition(result, PipelineState.DONE,
                         tagged=len(result.tagged), failed=len(result.failures))
        return result

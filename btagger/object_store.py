"""Object-store operations issued through the ``aws`` command line tool."""

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from btagger.errors import ExternalProcessError, ListParseError, TaggingError
from btagger.observability import NullSink, ObservabilitySink
from btagger.runner import ProcessRunner
from btagger.tags import TagSet

logger = logging.getLogger(__name__)

# create-bucket error codes meaning the bucket is already there
BUCKET_EXISTS_CODES = ('BucketAlreadyOwnedByYou', 'BucketAlreadyExists')


@dataclass(frozen=True)
class EndpointOverride:
    """S3-compatible endpoint with its own credentials.

    Only used when all three fields are present and non-blank; otherwise
    commands fall back to the ambient AWS configuration.
    """
    url: Optional[str] = None
    access_id: Optional[str] = None
    secret_key: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(value and value.strip() for value in (self.url, self.access_id, self.secret_key))

    def __repr__(self) -> str:
        return f"EndpointOverride(url={self.url!r}, complete={self.is_complete})"


class ObjectStoreClient:
    """Bucket, listing and tagging commands against one endpoint."""

    def __init__(self, runner: ProcessRunner, endpoint: Optional[EndpointOverride] = None,
                 region: Optional[str] = None, aws_command: str = 'aws',
                 sink: Optional[ObservabilitySink] = None):
        """Initialize the client.

        Args:
            runner: Executes the aws commands
            endpoint: Optional S3-compatible endpoint override
            region: AWS region passed to every command, if set
            aws_command: Name or path of the aws executable
            sink: Receives tagging and bucket events
        """
        self.runner = runner
        self.endpoint = endpoint or EndpointOverride()
        self.region = region
        self.aws_command = aws_command
        self.sink = sink or NullSink()

    @property
    def uses_override(self) -> bool:
        return self.endpoint.is_complete

    def command_env(self) -> Optional[Dict[str, str]]:
        """Environment for commands talking to the object store.

        With a complete override, the credentials are added to a copy of the
        current environment for that one child process. Otherwise ``None``,
        letting the child inherit the ambient environment unchanged.
        """
        if not self.uses_override:
            return None
        env = dict(os.environ)
        env['AWS_ACCESS_KEY_ID'] = self.endpoint.access_id
        env['AWS_SECRET_ACCESS_KEY'] = self.endpoint.secret_key
        return env

    def _aws(self, *args: str) -> List[str]:
        argv = [self.aws_command]
        if self.uses_override:
            argv += ['--endpoint-url', self.endpoint.url]
        if self.region:
            argv += ['--region', self.region]
        argv += list(args)
        return argv

    def ensure_bucket(self, bucket: str) -> None:
        """Create ``bucket``, ignoring every failure.

        An existing bucket is logged at INFO, anything else at WARNING.
        """
        args = ['s3api', 'create-bucket', '--bucket', bucket]
        if self.region and self.region != 'us-east-1' and not self.uses_override:
            args += ['--create-bucket-configuration', f'LocationConstraint={self.region}']

        try:
            result = self.runner.run(self._aws(*args), env=self.command_env())
        except ExternalProcessError as e:
            logger.warning(f"Could not create bucket {bucket}: {e}")
            return

        if result.ok:
            logger.info(f"Created bucket {bucket}")
            self.sink.record('bucket_created', {'bucket': bucket})
            return

        stderr = result.stderr_text
        if any(code in stderr for code in BUCKET_EXISTS_CODES):
            logger.info(f"Bucket {bucket} already exists")
        else:
            logger.warning(f"Could not create bucket {bucket} (status {result.returncode}): {stderr.strip()}")

    def list_objects(self, bucket: str, prefix: str) -> List[str]:
        """List every key under ``prefix``.

        Raises:
            ExternalProcessError: If the listing command fails
            ListParseError: If the output is not a valid listing document
        """
        argv = self._aws('s3api', 'list-objects-v2', '--bucket', bucket,
                         '--prefix', prefix, '--output', 'json')
        result = self.runner.run(argv, env=self.command_env())
        if not result.ok:
            raise ExternalProcessError('list-objects', argv, result.returncode, result.stderr_text)

        keys = parse_object_listing(result.stdout)
        logger.info(f"Found {len(keys)} object(s) under s3://{bucket}/{prefix}")
        return keys

    def put_tagging(self, bucket: str, key: str, tag_set: TagSet) -> None:
        """Replace the tags of one object.

        Raises:
            TaggingError: If the tagging command fails or cannot start
        """
        argv = self._aws('s3api', 'put-object-tagging', '--bucket', bucket,
                         '--key', key, '--tagging', tag_set.to_json())
        try:
            result = self.runner.run(argv, env=self.command_env())
        except ExternalProcessError as e:
            raise TaggingError(key, None, e.stderr) from e

        if not result.ok:
            self.sink.record('object_tagging_failed', {'key': key, 'status': result.returncode})
            raise TaggingError(key, result.returncode, result.stderr_text)

        self.sink.record('object_tagged', {'key': key, 'tags': ",".join(tag_set.keys)})

    def upload_command(self, bucket: str, key: str) -> List[str]:
        """Command that streams its standard input to ``s3://bucket/key``."""
        return self._aws('s3', 'cp', '--only-show-errors', '-', f's3://{bucket}/{key}')


def parse_object_listing(output: bytes) -> List[str]:
    """Extract object keys from ``list-objects-v2`` JSON output.

    Empty output and a missing ``Contents`` field both mean no objects.

    Raises:
        ListParseError: If the output is not UTF-8 or not shaped like
            {"Contents": [{"Key": ...}, ...]}
    """
    try:
        text = output.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ListParseError(f"Object listing is not valid UTF-8: {e}") from e

    if not text.strip():
        return []

    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ListParseError(f"Object listing is not valid JSON: {e}") from e

    if not isinstance(document, dict):
        raise ListParseError("Object listing must be a JSON object")

    contents = document.get('Contents')
    if contents is None:
        return []
    if not isinstance(contents, list):
        raise ListParseError("'Contents' must be a list")

    keys = []
    for entry in contents:
        if not isinstance(entry, dict) or not isinstance(entry.get('Key'), str):
            raise ListParseError(f"Listing entry without a string 'Key': {entry!r}")
        keys.append(entry['Key'])
    return keys

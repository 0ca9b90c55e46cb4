"""Single seam for running external commands.

Everything the pipelines execute (aws, zstd, surreal, tikv-br) goes through a
ProcessRunner, so tests and dry runs can substitute their own.
"""

import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from btagger.errors import ExternalProcessError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Completed command."""
    argv: List[str]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode('utf-8', errors='replace')


class PipedProcess(ABC):
    """Handle on a process started with ``spawn_piped``."""

    def __init__(self, argv: List[str]):
        self.argv = list(argv)

    @abstractmethod
    def wait(self) -> int:
        """Wait for the process to exit and return its status."""

    @abstractmethod
    def stderr_text(self) -> str:
        """Everything the process wrote to stderr."""

    @abstractmethod
    def terminate(self) -> None:
        """Stop the process before it consumes end of input."""


class ProcessRunner(ABC):
    """Runs commands to completion or spawns them as pipeline stages."""

    @abstractmethod
    def run(self, argv: List[str], stdin: Optional[bytes] = None,
            env: Optional[Dict[str, str]] = None) -> ProcessResult:
        """Run ``argv`` to completion, capturing stdout and stderr."""

    @abstractmethod
    def spawn_piped(self, argv: List[str], stdin: Optional[int] = None,
                    stdout: Optional[int] = None,
                    env: Optional[Dict[str, str]] = None) -> PipedProcess:
        """Start ``argv`` reading from file descriptor ``stdin`` and writing to ``stdout``."""


class _SubprocessHandle(PipedProcess):

    def __init__(self, argv, process, stderr_file):
        super().__init__(argv)
        self.process = process
        self._stderr_file = stderr_file
        self._stderr = None

    def wait(self) -> int:
        try:
            return self.process.wait()
        finally:
            self._collect_stderr()

    def terminate(self) -> None:
        if self.process.poll() is None:
            self.process.kill()

    def stderr_text(self) -> str:
        self._collect_stderr()
        return self._stderr

    def _collect_stderr(self):
        if self._stderr is None:
            with self._stderr_file:
                self._stderr_file.seek(0)
                self._stderr = self._stderr_file.read().decode('utf-8', errors='replace')


class SubprocessRunner(ProcessRunner):
    """Runner backed by the subprocess module."""

    def run(self, argv, stdin=None, env=None):
        logger.debug(f"Running: {' '.join(argv)}")
        try:
            completed = subprocess.run(
                argv,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise ExternalProcessError(argv[0], argv, None, str(e)) from e

        return ProcessResult(argv, completed.returncode, completed.stdout, completed.stderr)

    def spawn_piped(self, argv, stdin=None, stdout=None, env=None):
        logger.debug(f"Spawning: {' '.join(argv)}")
        # A file rather than a pipe, so a chatty stage cannot block on stderr
        stderr_file = tempfile.TemporaryFile()
        try:
            process = subprocess.Popen(
                argv,
                stdin=stdin,
                stdout=stdout,
                stderr=stderr_file,
                env=env,
            )
        except OSError as e:
            stderr_file.close()
            raise ExternalProcessError(argv[0], argv, None, str(e)) from e

        return _SubprocessHandle(argv, process, stderr_file)


class _DryRunHandle(PipedProcess):

    def wait(self) -> int:
        return 0

    def terminate(self) -> None:
        return None

    def stderr_text(self) -> str:
        return ""


@dataclass
class DryRunRunner(ProcessRunner):
    """Runner that records commands instead of executing them.

    Every command succeeds with empty output.
    """
    commands: List[List[str]] = field(default_factory=list)

    def run(self, argv, stdin=None, env=None):
        logger.info(f"[DRY-RUN] {' '.join(argv)}")
        self.commands.append(list(argv))
        return ProcessResult(list(argv), 0)

    def spawn_piped(self, argv, stdin=None, stdout=None, env=None):
        logger.info(f"[DRY-RUN] {' '.join(argv)}")
        self.commands.append(list(argv))
        return _DryRunHandle(argv)

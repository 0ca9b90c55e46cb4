"""Shared fixtures: a scriptable process runner and an event recorder."""

from datetime import datetime, timezone

import pytest

from btagger.errors import ExternalProcessError
from btagger.observability import ObservabilitySink
from btagger.runner import PipedProcess, ProcessResult, ProcessRunner


class RecordingSink(ObservabilitySink):
    """Sink that keeps every event in memory."""

    def __init__(self):
        self.events = []

    def record(self, event, fields):
        self.events.append((event, dict(fields)))

    def named(self, event):
        return [fields for name, fields in self.events if name == event]


class FakeProcess(PipedProcess):

    def __init__(self, argv, returncode=0, stderr=""):
        super().__init__(argv)
        self.returncode = returncode
        self._stderr = stderr
        self.waited = False
        self.terminated = False

    def wait(self):
        self.waited = True
        return self.returncode

    def terminate(self):
        self.terminated = True

    def stderr_text(self):
        return self._stderr


class FakeRunner(ProcessRunner):
    """Runner answering commands from rules instead of executing them.

    ``on('put-object-tagging', 'key-2', returncode=1)`` makes every command
    whose argv contains both words fail. Later rules win over earlier ones;
    unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.rules = []
        self.calls = []

    def on(self, *words, returncode=0, stdout=b"", stderr=b"", missing=False):
        self.rules.append((words, returncode, stdout, stderr, missing))
        return self

    def _match(self, argv):
        for words, returncode, stdout, stderr, missing in reversed(self.rules):
            if all(word in argv for word in words):
                return returncode, stdout, stderr, missing
        return 0, b"", b"", False

    def run(self, argv, stdin=None, env=None):
        self.calls.append(('run', list(argv), env))
        returncode, stdout, stderr, missing = self._match(argv)
        if missing:
            raise ExternalProcessError(argv[0], argv, None, f"No such file: {argv[0]}")
        return ProcessResult(list(argv), returncode, stdout, stderr)

    def spawn_piped(self, argv, stdin=None, stdout=None, env=None):
        self.calls.append(('spawn', list(argv), env))
        returncode, _, stderr, missing = self._match(argv)
        if missing:
            raise ExternalProcessError(argv[0], argv, None, f"No such file: {argv[0]}")
        return FakeProcess(argv, returncode, stderr.decode())

    def commands(self, kind=None):
        return [argv for call_kind, argv, _ in self.calls if kind is None or call_kind == kind]

    def calls_containing(self, word):
        return [(argv, env) for _, argv, env in self.calls if word in argv]


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def july_first():
    """Tuesday 2025-07-01 04:30 UTC, on the default nightly boundary."""
    return datetime(2025, 7, 1, 4, 30, tzinfo=timezone.utc)

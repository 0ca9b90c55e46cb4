"""Tests for the process runners."""

import os
import sys

import pytest

from btagger.errors import ExternalProcessError
from btagger.runner import DryRunRunner, PipedProcess, ProcessResult, ProcessRunner, SubprocessRunner


def test_process_result_ok():
    assert ProcessResult(["true"], 0).ok
    assert not ProcessResult(["false"], 1).ok


def test_stderr_text_replaces_invalid_bytes():
    assert ProcessResult(["x"], 1, stderr=b"bad \xff byte").stderr_text == "bad � byte"


class TestSubprocessRunner:

    def test_captures_output(self):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; print('out'); sys.stderr.write('err'); sys.exit(4)"])
        assert result.returncode == 4
        assert result.stdout.strip() == b"out"
        assert result.stderr_text == "err"

    def test_feeds_stdin(self):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read()[::-1])"], stdin=b"abc")
        assert result.stdout == b"cba"

    def test_passes_environment(self):
        env = dict(os.environ, BTAGGER_PROBE="42")
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import os; print(os.environ['BTAGGER_PROBE'])"], env=env)
        assert result.stdout.strip() == b"42"

    def test_missing_executable(self, tmp_path):
        missing = str(tmp_path / "nope")
        with pytest.raises(ExternalProcessError) as excinfo:
            SubprocessRunner().run([missing, "--version"])
        assert excinfo.value.returncode is None
        assert excinfo.value.stage == missing

    def test_spawn_piped_collects_stderr(self):
        handle = SubprocessRunner().spawn_piped(
            [sys.executable, "-c", "import sys; sys.stderr.write('e' * 100000); sys.exit(1)"])
        assert handle.wait() == 1
        assert handle.stderr_text() == "e" * 100000
        # Cached after the first read
        assert handle.stderr_text() == "e" * 100000

    def test_wait_releases_stderr_file(self):
        handle = SubprocessRunner().spawn_piped([sys.executable, "-c", "import sys; sys.stderr.write('late')"])
        handle.wait()
        assert handle._stderr_file.closed
        assert handle.stderr_text() == "late"

    def test_terminate_kills_waiting_process(self):
        read_end, write_end = os.pipe()
        try:
            handle = SubprocessRunner().spawn_piped(
                [sys.executable, "-c", "import sys; sys.stdin.read()"], stdin=read_end)
            os.close(read_end)
            handle.terminate()
            assert handle.wait() != 0
            # Already exited
            handle.terminate()
        finally:
            os.close(write_end)

    def test_spawn_missing_executable(self, tmp_path):
        with pytest.raises(ExternalProcessError):
            SubprocessRunner().spawn_piped([str(tmp_path / "nope")])


class TestDryRunRunner:

    def test_records_without_running(self, tmp_path):
        marker = tmp_path / "ran"
        runner = DryRunRunner()

        result = runner.run(["touch", str(marker)])
        handle = runner.spawn_piped(["zstd", "-c"])

        assert result.ok and result.stdout == b""
        assert handle.wait() == 0
        assert handle.stderr_text() == ""
        assert runner.commands == [["touch", str(marker)], ["zstd", "-c"]]
        assert not marker.exists()


def test_interfaces_are_abstract():
    with pytest.raises(TypeError):
        ProcessRunner()
    with pytest.raises(TypeError):
        PipedProcess(["zstd"])


def test_dry_run_terminate_is_harmless():
    handle = DryRunRunner().spawn_piped(["aws", "s3", "cp", "-", "s3://b/k"])
    handle.terminate()
    assert handle.wait() == 0

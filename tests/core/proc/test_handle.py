"""
Tests for ProcessHandle.

Spawns real shell commands to cover:
- stdout/stderr capture and exit codes
- channel errors (re-read, wrong direction, missing)
- extra channels, file redirects and pseudo-terminals
- working directory and environment handling
- termination and status snapshots
- descriptor cleanup on spawn failure
"""

import os
import signal
import time
from unittest.mock import patch

import psutil
import pytest

from procsup.exceptions import CloseError, PipeError, ProcError, SpawnError
from procsup.platform import is_pty_supported
from procsup.proc import (
    SECRET_CHANNEL,
    STDERR,
    STDIN,
    STDOUT,
    File,
    Inherit,
    Pipe,
    ProcessHandle,
    ProcessOptions,
    Pty,
)

pytestmark = [pytest.mark.posix, pytest.mark.integration]


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestCapture:
    """Test output capture and exit codes."""

    def test_stdout_and_zero_exit(self, test_logger):
        proc = ProcessHandle("printf hello", lg=test_logger).open()

        assert proc.read(STDOUT) == "hello"
        assert proc.close() == 0
        assert proc.exit_code == 0

    def test_stderr_and_exit_code(self):
        proc = ProcessHandle("echo oops >&2; exit 2").open()

        assert proc.read(STDERR) == "oops\n"
        assert proc.close() == 2

    def test_read_bytes(self):
        proc = ProcessHandle("printf 'a\\000b'").open()

        assert proc.read_bytes(STDOUT) == b"a\x00b"
        proc.close()

    def test_read_keeps_channel_open_when_asked(self):
        proc = ProcessHandle("printf x").open()

        assert proc.read(STDOUT, close=False) == "x"
        assert proc.read(STDOUT) == ""
        proc.close()

    def test_read_all_large_output(self):
        cmd = "head -c 200000 /dev/zero; head -c 300000 /dev/zero >&2"
        proc = ProcessHandle(cmd).open()
        proc.close_pipes([STDIN, SECRET_CHANNEL])

        captured = proc.read_all()

        assert len(captured[STDOUT]) == 200000
        assert len(captured[STDERR]) == 300000
        assert proc.close() == 0

    def test_context_manager_closes(self):
        with ProcessHandle("exit 4").open() as proc:
            pid = proc.pid

        assert proc.is_open is False
        assert proc.exit_code == 4
        assert proc.pid == pid

    def test_run_command(self):
        code, out, err = ProcessHandle.run_command("printf out; printf err >&2; exit 1")

        assert (code, out, err) == (1, "out", "err")

    def test_no_shell_option(self):
        proc = ProcessHandle(
            "printf '%s' 'two words'", options=ProcessOptions(shell=False)
        ).open()

        assert proc.read(STDOUT) == "two words"
        proc.close()


class TestChannels:
    """Test channel errors and extra channels."""

    def test_reread_closed_channel(self):
        proc = ProcessHandle("printf hello").open()
        proc.read(STDOUT)

        with pytest.raises(PipeError, match="not open"):
            proc.read(STDOUT)
        proc.close()

    def test_read_write_only_channel(self):
        proc = ProcessHandle("true").open()

        with pytest.raises(PipeError, match="not readable"):
            proc.read(STDIN)
        proc.close()

    def test_write_read_only_channel(self):
        proc = ProcessHandle("true").open()

        with pytest.raises(PipeError, match="not writable"):
            proc.write(STDOUT, "x")
        proc.close()

    def test_missing_channel(self):
        proc = ProcessHandle("true").open()

        with pytest.raises(PipeError):
            proc.get_pipe(9)
        proc.close()

    def test_stdin_round_trip(self):
        proc = ProcessHandle("cat").open()

        assert proc.write(STDIN, "piped", close=True) == 5
        assert proc.read(STDOUT) == "piped"
        assert proc.close() == 0

    def test_secret_channel(self):
        proc = ProcessHandle("cat <&3").open()

        proc.write(SECRET_CHANNEL, "s3cret", close=True)

        assert proc.read(STDOUT) == "s3cret"
        proc.close()

    def test_extra_write_channel(self):
        spec = {STDIN: Pipe("r"), STDOUT: Pipe("w"), STDERR: Pipe("w"), 4: Pipe("w")}
        proc = ProcessHandle("printf side >&4; printf main", spec).open()

        captured = proc.read_all([STDOUT, 4])

        assert captured == {STDOUT: "main", 4: "side"}
        proc.close()

    def test_extra_channels_with_colliding_numbers(self):
        spec = {
            STDOUT: Pipe("w"),
            3: Pipe("w"),
            4: Pipe("w"),
            5: Pipe("w"),
        }
        proc = ProcessHandle("printf a >&3; printf b >&4; printf c >&5", spec).open()

        assert proc.read_all([3, 4, 5]) == {3: "a", 4: "b", 5: "c"}
        proc.close()

    def test_file_redirect(self, temp_dir):
        target = temp_dir / "out.txt"
        spec = {STDIN: Inherit(), STDOUT: File(str(target), "w")}

        proc = ProcessHandle("printf saved", spec).open()

        assert STDOUT not in proc.pipes
        assert proc.close() == 0
        assert target.read_text() == "saved"

    @pytest.mark.skipif(not is_pty_supported(), reason="no pseudo-terminals")
    def test_pty_channel(self):
        proc = ProcessHandle("printf tty", {STDOUT: Pty()}).open()

        assert "tty" in proc.read(STDOUT)
        assert proc.close() == 0


class TestEnvironment:
    """Test working directory and environment."""

    def test_work_dir(self, temp_dir):
        proc = ProcessHandle("pwd", work_dir=str(temp_dir)).open()

        out = proc.read(STDOUT).strip()

        assert os.path.realpath(out) == os.path.realpath(temp_dir)
        proc.close()

    def test_work_dir_restored(self, temp_dir):
        before = os.getcwd()

        ProcessHandle("true").run(str(temp_dir)).close()

        assert os.getcwd() == before

    def test_bad_work_dir_raises_and_restores_cwd(self, temp_dir):
        before = os.getcwd()
        proc = ProcessHandle("true", work_dir=str(temp_dir / "missing"))

        with pytest.raises(SpawnError) as exc_info:
            proc.open()

        assert os.getcwd() == before
        assert exc_info.value.context["work_dir"] == str(temp_dir / "missing")
        assert proc.is_open is False

    def test_empty_work_dir_means_unset(self):
        proc = ProcessHandle("true", work_dir="")

        assert proc.work_dir is None

    def test_env(self):
        env = {"PATH": os.environ.get("PATH", "/bin:/usr/bin"), "FOO": "bar"}
        proc = ProcessHandle('printf "$FOO"', env=env).open()

        assert proc.read(STDOUT) == "bar"
        proc.close()


class TestLifecycle:
    """Test open/close errors, termination and status."""

    def test_empty_command(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            ProcessHandle("").open()

    def test_double_open(self):
        proc = ProcessHandle("true").open()

        with pytest.raises(SpawnError, match="already open"):
            proc.open()
        proc.close()

    def test_close_without_open(self):
        with pytest.raises(CloseError):
            ProcessHandle("true").close()

    def test_close_twice(self):
        proc = ProcessHandle("true").open()
        proc.close()

        with pytest.raises(CloseError):
            proc.close()

    def test_open_close_without_reading(self):
        proc = ProcessHandle("sleep 0.1").open()

        assert proc.close() == 0

    def test_status_never_opened(self):
        with pytest.raises(ProcError, match="not open"):
            ProcessHandle("true").get_status()

    def test_terminate(self):
        proc = ProcessHandle("exec sleep 30").open()

        assert proc.get_status().running is True
        assert proc.terminate() is True
        assert proc.close() == -signal.SIGTERM

        status = proc.get_status()
        assert status.running is False
        assert status.signaled is True
        assert status.term_signal == signal.SIGTERM

    def test_terminate_after_exit(self):
        proc = ProcessHandle("true").open()
        assert _wait_for(lambda: not proc.get_status().running)

        assert proc.terminate() is False
        proc.close()

    def test_terminate_closed(self):
        proc = ProcessHandle("true").open()
        proc.close()

        assert proc.terminate() is False

    def test_close_after_external_kill(self):
        proc = ProcessHandle("exec sleep 30").open()
        os.kill(proc.pid, signal.SIGKILL)

        assert proc.close() == -signal.SIGKILL
        assert proc.get_status().signaled is True

    def test_stopped_status(self):
        proc = ProcessHandle("exec sleep 30").open()
        try:
            os.kill(proc.pid, signal.SIGSTOP)
            assert _wait_for(lambda: proc.get_status().stopped)
            status = proc.get_status()
            assert status.running is True
            assert status.stop_signal == signal.SIGSTOP
        finally:
            os.kill(proc.pid, signal.SIGKILL)
            proc.close()

    def test_spawn_failure_leaks_no_descriptors(self):
        before = psutil.Process().num_fds()
        with patch(
            "procsup.proc.handle.subprocess.Popen", side_effect=OSError("no more")
        ):
            with pytest.raises(SpawnError):
                ProcessHandle("true").open()

        assert psutil.Process().num_fds() == before

    def test_file_open_failure(self, temp_dir):
        spec = {STDOUT: File(str(temp_dir / "missing" / "out.txt"), "w")}

        with pytest.raises(SpawnError):
            ProcessHandle("true", spec).open()

    def test_run_editor(self):
        inherit = {STDIN: Inherit(), STDOUT: Inherit(), STDERR: Inherit()}
        with patch("procsup.proc.handle.tty_descriptors", return_value=inherit):
            assert ProcessHandle.run_editor("sh -c", "'exit 3'") == 3

"""
Tests for the procsup command line.

Commands are run through main() with a BufferedOutput; process-affecting
calls are mocked except where a short shell command is cheap to run.
"""

import os
import signal
import time
from unittest.mock import patch

import psutil
import pytest

from procsup.cli import BufferedOutput, main
from procsup.cli.cli import EXIT_FAILURE, EXIT_OK, EXIT_TIMEOUT, _pool_entry
from procsup.config import SupervisorConfig
from procsup.exceptions import SignalTimeoutError
from procsup.supervisor import ProcessSupervisor

_NO_SUCH_PID = 99999999


def _run(*argv: str) -> tuple[int, BufferedOutput]:
    out = BufferedOutput()
    code = main(list(argv), out)
    return code, out


@pytest.mark.unit
class TestVersion:
    """Test the version command."""

    def test_version(self):
        code, out = _run("version")

        assert code == EXIT_OK
        assert out.lines[0].startswith("procsup ")

    def test_version_with_build_info(self):
        build = {"commit": "abc1234", "time": None, "modified": True}
        with patch("procsup.cli.cli._build_info", return_value=build):
            _, out = _run("version")

        assert out.lines[0].endswith("(abc1234-modified)")


@pytest.mark.unit
class TestKill:
    """Test the kill command with a mocked controller."""

    def test_sent(self):
        with patch(
            "procsup.cli.cli.SignalController.send_signal", return_value=True
        ) as mock_send:
            code, out = _run("kill", "1234", "--signal", "INT")

        assert code == EXIT_OK
        mock_send.assert_called_once_with(1234, signal.SIGINT, timeout=0.0)
        assert out.lines == ["sent SIGINT(Ctrl+C) to 1234"]

    def test_force_sends_kill(self):
        with patch(
            "procsup.cli.cli.SignalController.send_signal", return_value=True
        ) as mock_send:
            _run("kill", "1234", "--signal", "INT", "--force")

        assert mock_send.call_args.args == (1234, signal.SIGKILL)

    def test_no_such_process(self):
        with patch("procsup.cli.cli.SignalController.send_signal", return_value=False):
            code, out = _run("kill", "1234")

        assert code == EXIT_FAILURE
        assert out.lines == ["no such process: 1234"]

    def test_timeout(self):
        error = SignalTimeoutError(
            "process did not exit", pid=1234, signum=15, timeout=2.0
        )
        with patch("procsup.cli.cli.SignalController.send_signal", side_effect=error):
            code, out = _run("kill", "1234", "--timeout", "2")

        assert code == EXIT_TIMEOUT
        assert out.lines == ["process 1234 still running after 2.0s"]

    def test_unknown_signal(self, capsys):
        code, _ = _run("kill", "1234", "--signal", "NOPE")

        assert code == EXIT_FAILURE
        assert "unknown signal" in capsys.readouterr().err


@pytest.mark.posix
@pytest.mark.integration
class TestStatus:
    """Test the status command against real processes."""

    def test_own_process(self):
        code, out = _run("status", str(os.getpid()))

        assert code == EXIT_OK
        assert f"process {os.getpid()}" in out.text
        assert "running" in out.text
        assert "True" in out.text

    def test_missing_process(self):
        code, out = _run("status", str(_NO_SUCH_PID))

        assert code == EXIT_FAILURE
        assert out.lines == [f"no such process: {_NO_SUCH_PID}"]


@pytest.mark.posix
@pytest.mark.integration
class TestRun:
    """Test the run command."""

    def test_output_is_echoed(self):
        code, out = _run("run", "printf hi")

        assert code == EXIT_OK
        assert out.lines == ["hi"]

    def test_exit_code_and_stderr(self, capsys):
        code, out = _run("run", "echo oops >&2; exit 3")

        assert code == 3
        assert out.lines == []
        assert "oops" in capsys.readouterr().err

    def test_cwd_and_env(self, temp_dir):
        code, out = _run(
            "run",
            'printf "%s:%s" "$PWD" "$GREETING"',
            "--cwd",
            str(temp_dir),
            "--env",
            "GREETING=hello",
        )

        assert code == EXIT_OK
        assert out.lines == [f"{os.path.realpath(temp_dir)}:hello"]

    def test_signaled_command_uses_shell_status(self):
        code, _ = _run("run", "kill -TERM $$")

        assert code == 128 + signal.SIGTERM

    def test_bad_env_pair(self, capsys):
        code, _ = _run("run", "true", "--env", "NOVALUE")

        assert code == EXIT_FAILURE
        assert "KEY=VALUE" in capsys.readouterr().err


@pytest.mark.posix
@pytest.mark.integration
class TestPool:
    """Test the pool command with short-lived workers."""

    def test_workers_succeed(self):
        code, out = _run("pool", "-n", "2", "exit 0")

        assert code == EXIT_OK
        assert "workers" in out.text
        assert "exit code" in out.text

    def test_worker_failure(self):
        code, _ = _run("pool", "-n", "2", "exit 4")

        assert code == EXIT_FAILURE

    def test_config_file(self, temp_dir):
        config = temp_dir / "procsup.yaml"
        config.write_text(
            "supervisor:\n  worker_count: 3\n  reap_interval: 0.01\n"
            "logging:\n  level: error\n  colors: false\n"
        )

        code, out = _run("--config", str(config), "pool", "exit 0")

        assert code == EXIT_OK
        rows = [line for line in out.lines if line.startswith("│")]
        assert len(rows) == 3

    def test_invalid_worker_count(self, capsys):
        code, _ = _run("pool", "-n", "0", "exit 0")

        assert code == EXIT_FAILURE
        assert "worker_count" in capsys.readouterr().err


def _command_procs(workers, name: str, timeout: float = 5.0) -> list[psutil.Process]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        procs = [
            child
            for pid in workers
            for child in psutil.Process(pid).children(recursive=True)
            if child.name() == name
        ]
        if len(procs) == len(workers):
            return procs
        time.sleep(0.02)
    raise AssertionError(f"commands did not start: {name}")


@pytest.mark.posix
@pytest.mark.integration
class TestPoolEntry:
    """Test that pool workers take their commands down with them."""

    def test_shutdown_stops_commands(self, test_logger, controller):
        config = SupervisorConfig(worker_count=2, reap_interval=0.01)
        supervisor = ProcessSupervisor(test_logger, config, signals=controller)
        entry = _pool_entry("sleep 37; true", test_logger)

        records = supervisor.run(on_start=entry)
        commands = _command_procs(records, "sleep")
        exits = supervisor.shutdown(timeout=5.0)
        _, alive = psutil.wait_procs(commands, timeout=5.0)

        assert exits == {pid: -signal.SIGTERM for pid in records}
        assert alive == []

    def test_command_exit_code_is_returned(self, test_logger, controller):
        config = SupervisorConfig(worker_count=1, reap_interval=0.01)
        supervisor = ProcessSupervisor(test_logger, config, signals=controller)
        exits = {}

        supervisor.run(on_start=_pool_entry("exit 5", test_logger))
        supervisor.wait(lambda pid, code, status: exits.update({pid: code}))

        assert list(exits.values()) == [5]


@pytest.mark.unit
class TestErrors:
    """Test error reporting."""

    def test_missing_config(self, temp_dir, capsys):
        code, _ = _run("--config", str(temp_dir / "nope.yaml"), "version")

        assert code == EXIT_FAILURE
        assert "configuration file not found" in capsys.readouterr().err

    def test_missing_command(self):
        with pytest.raises(SystemExit):
            main([], BufferedOutput())

    def test_bad_log_level(self, capsys):
        code, _ = _run("--log-level", "loud", "version")

        assert code == EXIT_FAILURE
        assert "invalid log level" in capsys.readouterr().err

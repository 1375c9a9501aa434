"""
procsup CLI - run commands, supervise worker pools and signal processes.

Usage:
    procsup run "ls -l" --cwd /tmp
    procsup pool -n 4 --title web "python -m http.server"
    procsup kill 1234 --signal TERM --timeout 5
    procsup status 1234
    procsup version
"""

from __future__ import annotations

import argparse
import contextlib
import os
import signal
import sys
from collections.abc import Callable, Sequence
from typing import Any, NoReturn

import psutil

from ..config import SupervisorConfig, load_config
from ..exceptions import ProcError, SignalTimeoutError
from ..log import LogConfig, Logger, LoggerFactory, derive_lg
from ..proc import STDERR, STDIN, STDOUT, Inherit, ProcessHandle, ProcessOptions
from ..signals import SignalController, describe, resolve_signal
from ..signals.names import SignalLike
from ..supervisor import ProcessSupervisor
from .output import ConsoleOutput, OutputWriter

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2

# Signals a pool worker relays to its command's process group
POOL_FORWARDED_SIGNALS = ("INT", "TERM")


def _parse_env(pairs: Sequence[str] | None) -> dict[str, str] | None:
    if not pairs:
        return None
    env = dict(os.environ)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {pair!r}")
        env[key] = value
    return env


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procsup", description="Process spawning and supervision"
    )
    parser.add_argument(
        "--log-level", default="warning", help="Log level (default: warning)"
    )
    parser.add_argument("--config", help="YAML configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a shell command and capture its output")
    run.add_argument("cmd", help="Shell command line")
    run.add_argument("--cwd", help="Working directory for the command")
    run.add_argument(
        "--env", action="append", metavar="KEY=VALUE", help="Extra environment"
    )

    pool = sub.add_parser("pool", help="Run a command in a pool of forked workers")
    pool.add_argument("cmd", help="Shell command line run by every worker")
    pool.add_argument("-n", "--workers", type=int, help="Number of workers")
    pool.add_argument("--title", help="Process title prefix")
    pool.add_argument("--stop-signal", help="Signal relayed to workers on stop")

    kill = sub.add_parser("kill", help="Send a signal to a process")
    kill.add_argument("pid", type=int)
    kill.add_argument("-s", "--signal", default="TERM", help="Signal (default: TERM)")
    kill.add_argument(
        "-t", "--timeout", type=float, default=0.0, help="Retry until gone"
    )
    kill.add_argument("-f", "--force", action="store_true", help="Send KILL")

    status = sub.add_parser("status", help="Show the state of a process")
    status.add_argument("pid", type=int)

    sub.add_parser("version", help="Show version and build info")
    return parser


def _create_logger(level: str, config: dict[str, Any]) -> Logger:
    if "logging" in config:
        log_config = LogConfig.from_config(config, "logging")
    else:
        log_config = LogConfig.from_params(level, colors=sys.stderr.isatty())
    return LoggerFactory.create("/procsup/cli", log_config, stream=sys.stderr)


def _shell_status(code: int) -> int:
    """Map a -signum exit code to the shell's 128 + signum."""
    return 128 - code if code < 0 else code


def _die_by(signum: int) -> NoReturn:
    signal.signal(signum, signal.SIG_DFL)
    os.kill(os.getpid(), signum)
    os._exit(128 + signum)


def cmd_run(args: argparse.Namespace, lg: Logger, out: OutputWriter) -> int:
    """Run a command to completion, echoing its output."""
    code, output, error = ProcessHandle.run_command(
        args.cmd, work_dir=args.cwd, env=_parse_env(args.env), lg=lg
    )
    if output:
        out.write_raw(output)
    if error:
        sys.stderr.write(error)
    return _shell_status(code)


def _pool_entry(
    command: str, lg: Logger, stop_signal: SignalLike = "TERM"
) -> Callable[[int, int], int]:
    """
    Build the worker entry point for `procsup pool`.

    Each worker runs the command in a new session and forwards INT, TERM
    and the stop signal to that whole process group, then dies by the
    same signal the command did. The supervisor thus sees the command's
    fate, and stopping a worker never orphans its command.
    """
    forwarded = {resolve_signal(s) for s in (*POOL_FORWARDED_SIGNALS, stop_signal)}

    def _entry(pid: int, worker_id: int) -> int:
        env = dict(os.environ, PROCSUP_WORKER_ID=str(worker_id))
        handle = ProcessHandle(
            command,
            {STDIN: Inherit(), STDOUT: Inherit(), STDERR: Inherit()},
            env=env,
            options=ProcessOptions(new_session=True),
            lg=lg,
        )

        def _forward(signum: int) -> None:
            if not handle.is_open:
                _die_by(signum)
            with contextlib.suppress(ProcessLookupError):
                os.killpg(handle.pid, signum)

        signals = SignalController.get_instance()
        signals.async_signals(True)
        for sig in forwarded:
            signals.install(sig, _forward)

        code = handle.open().close()
        if code < 0:
            _die_by(-code)
        return code

    return _entry


def cmd_pool(
    args: argparse.Namespace, lg: Logger, out: OutputWriter, config: dict[str, Any]
) -> int:
    """Fork a pool running the command and wait for every worker."""
    overrides: dict[str, Any] = {}
    if args.workers is not None:
        overrides["worker_count"] = args.workers
    if args.title:
        overrides["title"] = args.title
    if args.stop_signal:
        overrides["stop_signal"] = args.stop_signal

    section = dict(config.get("supervisor") or {})
    section.update(overrides)
    sup_config = SupervisorConfig.from_config({"supervisor": section})
    sup_config = sup_config.with_callbacks(
        on_start=_pool_entry(args.cmd, lg, sup_config.stop_signal)
    )
    supervisor = ProcessSupervisor(derive_lg(lg, "pool"), sup_config)

    records = supervisor.run()
    exits = supervisor.supervise()

    rows = [
        (record.worker_id, pid, exits.get(pid))
        for pid, record in sorted(records.items(), key=lambda kv: kv[1].worker_id)
    ]
    out.table("workers", ["worker", "pid", "exit code"], rows)
    return EXIT_OK if all(code == 0 for code in exits.values()) else EXIT_FAILURE


def cmd_kill(args: argparse.Namespace, lg: Logger, out: OutputWriter) -> int:
    """Signal a process, optionally retrying until it is gone."""
    sig = signal.SIGKILL if args.force else resolve_signal(args.signal)
    controller = SignalController(lg=derive_lg(lg, "signals"))
    try:
        delivered = controller.send_signal(args.pid, sig, timeout=args.timeout)
    except SignalTimeoutError as e:
        out.write(f"process {args.pid} still running after {e.timeout}s")
        return EXIT_TIMEOUT
    if not delivered:
        out.write(f"no such process: {args.pid}")
        return EXIT_FAILURE
    out.write(f"sent {describe(sig)} to {args.pid}")
    return EXIT_OK


def cmd_status(args: argparse.Namespace, lg: Logger, out: OutputWriter) -> int:
    """Show the state of an arbitrary process."""
    try:
        proc = psutil.Process(args.pid)
        with proc.oneshot():
            rows = [
                ("pid", proc.pid),
                ("name", proc.name()),
                ("status", proc.status()),
                ("running", SignalController.is_running(args.pid)),
                ("parent", proc.ppid()),
            ]
    except psutil.NoSuchProcess:
        out.write(f"no such process: {args.pid}")
        return EXIT_FAILURE
    out.table(f"process {args.pid}", ["field", "value"], rows)
    return EXIT_OK


def _build_info() -> dict[str, Any]:
    try:
        from .. import _build_info  # type: ignore[attr-defined]
    except ImportError:
        return {}
    return {
        "commit": getattr(_build_info, "COMMIT_SHORT", "") or None,
        "time": getattr(_build_info, "BUILD_TIME", "") or None,
        "modified": getattr(_build_info, "MODIFIED", None),
    }


def cmd_version(args: argparse.Namespace, lg: Logger, out: OutputWriter) -> int:
    """Show version and build info."""
    from .. import __version__

    build = _build_info()
    line = f"procsup {__version__}"
    if build.get("commit"):
        line += f" ({build['commit']}{'-modified' if build.get('modified') else ''})"
    out.write(line)
    return EXIT_OK


def main(argv: Sequence[str] | None = None, out: OutputWriter | None = None) -> int:
    """Main entry point for the procsup CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    out = out if out is not None else ConsoleOutput()

    try:
        config = load_config(args.config) if args.config else {}
        lg = _create_logger(args.log_level, config)
        if args.command == "pool":
            return cmd_pool(args, lg, out, config)
        commands = {
            "run": cmd_run,
            "kill": cmd_kill,
            "status": cmd_status,
            "version": cmd_version,
        }
        return commands[args.command](args, lg, out)
    except (ProcError, ValueError, argparse.ArgumentTypeError) as e:
        print(f"procsup: error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

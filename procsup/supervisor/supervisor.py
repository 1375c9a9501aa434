"""
Pre-fork worker supervisor.

ProcessSupervisor forks a fixed number of workers running a callable, keeps
a pid table of them, signals them on request and reaps them as they exit.

Example:
    def serve(pid: int, worker_id: int) -> int:
        ...
        return 0

    supervisor = ProcessSupervisor(lg, SupervisorConfig(worker_count=4))
    supervisor.run(on_start=serve)
    exits = supervisor.supervise()
"""

from __future__ import annotations

import signal
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from ..config.supervisor import SupervisorConfig
from ..exceptions import ForkError, UnsupportedPlatformError
from ..identity import set_title
from ..log import Logger, default_lg, derive_lg
from ..platform import has_fork, has_posix_signals
from ..signals import SignalController, describe, resolve_signal
from ..signals.names import SignalLike
from .fork import daemonize, spawn
from .pidfile import PidFile
from .reaper import Reaper
from .worker import ErrorCallback, ExitCallback, WorkerEntry, WorkerRecord


class ProcessSupervisor:
    """
    Forks, signals and reaps a pool of workers.

    The pid table is owned by the control flow that created the supervisor;
    it is not safe to drive one supervisor from several threads.
    """

    def __init__(
        self,
        lg: Logger | None = None,
        config: SupervisorConfig | None = None,
        signals: SignalController | None = None,
        reaper: Reaper | None = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            lg: Logger instance
            config: Supervisor settings (default: one worker, TERM to stop)
            signals: Signal controller (default: the process-wide one)
            reaper: Child reaper (default: one tracking forked workers only)
        """
        self._lg = lg if lg is not None else default_lg("supervisor")
        self._config = config if config is not None else SupervisorConfig()
        self._signals = (
            signals if signals is not None else SignalController.get_instance()
        )
        self._reaper = (
            reaper
            if reaper is not None
            else Reaper(
                lg=derive_lg(self._lg, "reaper"),
                pids=(),
                interval=self._config.reap_interval,
                blocking=self._config.blocking_reap,
            )
        )
        self._workers: dict[int, WorkerRecord] = {}
        self._next_id = 0
        self._daemonized = False
        self._pid_file = (
            PidFile(self._config.pid_file) if self._config.pid_file else None
        )

    @classmethod
    def from_config(
        cls,
        config_dict: dict,
        section: str = "supervisor",
        lg: Logger | None = None,
        **callbacks: Any,
    ) -> ProcessSupervisor:
        """
        Create a supervisor from a configuration dictionary.

        Example:
            config = load_config("etc/procsup.yaml")
            supervisor = ProcessSupervisor.from_config(config, lg=lg, on_start=serve)
        """
        return cls(lg, SupervisorConfig.from_config(config_dict, section, **callbacks))

    @property
    def config(self) -> SupervisorConfig:
        return self._config

    @property
    def signals(self) -> SignalController:
        return self._signals

    @property
    def reaper(self) -> Reaper:
        return self._reaper

    @property
    def workers(self) -> dict[int, WorkerRecord]:
        """Live workers keyed by pid (copy)."""
        return dict(self._workers)

    def _worker_title(self, worker_id: int) -> str | None:
        if not self._config.title:
            return None
        return f"{self._config.title}: worker {worker_id}"

    def _detach(self) -> None:
        if self._daemonized:
            return
        daemonize(
            lambda pid: self._lg.info("detached supervisor", extra={"pid": pid})
        )
        self._daemonized = True
        if self._pid_file is not None:
            self._pid_file.write()

    # -- forking ---------------------------------------------------------

    def run(
        self,
        worker_count: int | None = None,
        on_start: WorkerEntry | None = None,
        on_error: ErrorCallback | None = None,
    ) -> dict[int, WorkerRecord]:
        """
        Fork the worker pool.

        Each child calls on_start(pid, worker_id) and exits with its result;
        it never returns here. The parent records each worker and tracks it
        for reaping.

        Args:
            worker_count: Workers to fork (default: config.worker_count)
            on_start: Worker entry point (default: config.on_start)
            on_error: Called with -1 when a fork fails (default: config.on_error)

        Returns:
            The workers forked by this call, keyed by pid

        Raises:
            UnsupportedPlatformError: If the platform cannot fork
            ForkError: If a fork fails; remaining workers are not forked
            ValueError: If worker_count is not positive or no entry point is set
        """
        count = worker_count if worker_count is not None else self._config.worker_count
        entry = on_start if on_start is not None else self._config.on_start
        on_error = on_error if on_error is not None else self._config.on_error
        if count <= 0:
            raise ValueError(f"worker_count must be positive, got {count}")
        if entry is None:
            raise ValueError("no worker entry point (on_start) configured")
        if not has_fork():
            raise UnsupportedPlatformError("fork not supported on this platform")

        if self._config.daemon:
            self._detach()
        if self._config.title:
            set_title(f"{self._config.title}: master")

        forked: dict[int, WorkerRecord] = {}
        for _ in range(count):
            worker_id = self._next_id
            try:
                record = spawn(
                    entry,
                    worker_id,
                    on_error=on_error,
                    title=self._worker_title(worker_id),
                    lg=self._lg,
                )
            except ForkError as e:
                self._abort_run(forked, worker_id, e)
            self._next_id += 1
            forked[record.pid] = record
            self._workers[record.pid] = record
            self._reaper.track(record.pid)
            self._lg.debug(
                "forked worker", extra={"worker": worker_id, "pid": record.pid}
            )

        self._lg.info("started workers", extra={"count": len(forked)})
        return forked

    def _abort_run(
        self, forked: Mapping[int, WorkerRecord], worker_id: int, error: ForkError
    ) -> None:
        """Handle a fork failure part way through run(); always raises."""
        pids = sorted(forked)
        if not self._config.rollback_on_error or not pids:
            raise ForkError(
                "fork failed", worker_id=worker_id, forked_pids=pids
            ) from error.__cause__

        self._lg.warning(
            "fork failed, rolling back forked workers",
            extra={"worker": worker_id, "pids": pids},
        )
        for pid in pids:
            self._signals.send_signal(pid, signal.SIGKILL)
        Reaper(lg=self._lg, pids=pids, interval=self._config.reap_interval).wait()
        for pid in pids:
            self._workers.pop(pid, None)
            self._reaper.untrack(pid)

        raise ForkError(
            "fork failed", worker_id=worker_id, rolled_back=len(pids)
        ) from error.__cause__

    # -- stopping --------------------------------------------------------

    def stop_workers(
        self,
        sig: SignalLike | None = None,
        before_all: Callable[[int, str], Any] | None = None,
        before_each: Callable[[int, WorkerRecord], Any] | None = None,
        pid_table: Mapping[int, WorkerRecord] | None = None,
    ) -> bool:
        """
        Signal every worker once, without waiting for them to exit.

        Args:
            sig: Signal to send (default: config.stop_signal)
            before_all: Called once as (signum, description) before sending
            before_each: Called as (pid, record) before each delivery
            pid_table: Workers to signal (default: the supervisor's own)

        Returns:
            False if there was nothing to stop, True otherwise
        """
        table = dict(pid_table) if pid_table is not None else dict(self._workers)
        if not table:
            return False
        if not has_posix_signals():
            raise UnsupportedPlatformError("signals not supported on this platform")

        signum = resolve_signal(sig if sig is not None else self._config.stop_signal)
        if before_all is not None:
            before_all(int(signum), describe(signum))
        self._lg.info(
            "stopping workers",
            extra={"signal": describe(signum), "count": len(table)},
        )

        for pid, record in table.items():
            if before_each is not None:
                before_each(pid, record)
            self._signals.send_signal(pid, signum)
        return True

    # -- reaping ---------------------------------------------------------

    def wait(
        self, on_exit: ExitCallback | None = None, timeout: float | None = None
    ) -> int:
        """
        Reap workers until all have exited or the timeout expires.

        Args:
            on_exit: Called as (pid, exit_code, raw_status) per reaped worker
                (default: config.on_exit)
            timeout: Seconds to wait; None waits for every worker

        Returns:
            Number of workers reaped
        """
        callback = on_exit if on_exit is not None else self._config.on_exit

        def _on_exit(pid: int, exit_code: int, raw_status: int) -> None:
            record = self._workers.pop(pid, None)
            self._lg.info(
                "worker exited",
                extra={
                    "worker": record.worker_id if record else None,
                    "pid": pid,
                    "exit_code": exit_code,
                },
            )
            if callback is not None:
                callback(pid, exit_code, raw_status)

        try:
            return self._reaper.wait(_on_exit, timeout)
        finally:
            self._drop_lost_workers()

    def _drop_lost_workers(self) -> None:
        """Forget workers the reaper can no longer report."""
        if self._reaper.any_child:
            lost = [] if self._reaper.has_children() else list(self._workers)
        else:
            live = self._reaper.tracked | self._reaper.pending
            lost = [pid for pid in self._workers if pid not in live]
        for pid in lost:
            record = self._workers.pop(pid)
            self._lg.warning(
                "lost track of worker",
                extra={"worker": record.worker_id, "pid": pid},
            )

    def shutdown(self, timeout: float | None = None) -> dict[int, int]:
        """
        Stop all workers, escalating to KILL for those that outlive timeout.

        Args:
            timeout: Grace period in seconds (default: config.stop_timeout)

        Returns:
            Exit codes of the reaped workers, keyed by pid
        """
        timeout = timeout if timeout is not None else self._config.stop_timeout
        exits: dict[int, int] = {}

        def _record(pid: int, exit_code: int, raw_status: int) -> None:
            exits[pid] = exit_code
            if self._config.on_exit is not None:
                self._config.on_exit(pid, exit_code, raw_status)

        if self.stop_workers():
            self.wait(_record, timeout=timeout)
        if self._workers:
            self._lg.warning(
                "workers survived stop signal, killing",
                extra={"pids": sorted(self._workers)},
            )
            self.stop_workers(signal.SIGKILL)
            self.wait(_record)

        if self._pid_file is not None and self._daemonized:
            self._pid_file.remove()
        return exits

    def supervise(
        self, stop_signals: Iterable[SignalLike] = ("INT", "TERM")
    ) -> dict[int, int]:
        """
        Reap workers until all have exited, forwarding stop signals to them.

        While supervising, each of stop_signals received by the supervisor is
        relayed to the workers as config.stop_signal.

        Returns:
            Exit codes of the reaped workers, keyed by pid
        """
        exits: dict[int, int] = {}

        def _record(pid: int, exit_code: int, raw_status: int) -> None:
            exits[pid] = exit_code
            if self._config.on_exit is not None:
                self._config.on_exit(pid, exit_code, raw_status)

        def _on_stop(signum: int) -> None:
            self._lg.info("received stop signal", extra={"signal": describe(signum)})
            self.stop_workers()

        installed = list(stop_signals)
        for sig in installed:
            self._signals.install(sig, _on_stop)
        try:
            while self._workers:
                self._signals.dispatch()
                self.wait(_record, timeout=self._config.reap_interval * 4)
            self._signals.dispatch()
        finally:
            for sig in installed:
                self._signals.uninstall(sig)

        if self._pid_file is not None and self._daemonized:
            self._pid_file.remove()
        return exits

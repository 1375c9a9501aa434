"""
Handle on a single spawned process and its pipes.

ProcessHandle opens a shell command with a descriptor spec, exposes the
parent side of each pipe by channel index, and reaps the process on close.

Reading one channel to EOF while the child blocks writing a full buffer on
another channel deadlocks. Use read_all() when capturing stdout and stderr
of a command that may produce a lot of output.
"""

from __future__ import annotations

import contextlib
import errno
import os
import shlex
import signal
import subprocess
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import IO, Any

from ..exceptions import CloseError, PipeError, ProcError, SpawnError
from ..log import Logger, default_lg
from ..platform import has_posix_signals, has_waitid, is_posix
from ..signals.names import SignalLike, resolve_signal
from .descriptors import (
    STDERR,
    STDIN,
    STDOUT,
    Descriptor,
    DescriptorSpec,
    File,
    Inherit,
    Pipe,
    Pty,
    default_descriptors,
    filter_for_platform,
    tty_descriptors,
    validate,
)
from .status import ProcessStatus

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProcessOptions:
    """
    Flags controlling how the process is created.

    Attributes:
        shell: Run the command line through the platform shell
        new_session: Start the child in a new session (detached from our
            controlling terminal and process group)
        encoding: Encoding used by read()/write() for text
        errors: Error handler for decoding/encoding text
    """

    shell: bool = True
    new_session: bool = False
    encoding: str = "utf-8"
    errors: str = "replace"


@contextlib.contextmanager
def _working_directory(path: str | None) -> Iterator[None]:
    """Switch to path for the duration of the block, if one is given."""
    if not path:
        yield
        return
    with contextlib.chdir(path):
        yield


def _map_extra_channels(mapping: dict[int, int]) -> Callable[[], None]:
    """
    Build the child-side hook placing extra channels at their index.

    Sources are first duplicated above the highest target, since a source
    fd may sit on another channel's target number.
    """
    import fcntl

    floor = max(mapping) + 1

    def _preexec() -> None:
        staged = {t: fcntl.fcntl(s, fcntl.F_DUPFD, floor) for t, s in mapping.items()}
        for target, fd in staged.items():
            os.dup2(fd, target)
            os.close(fd)

    return _preexec


def _file_mode(mode: str) -> str:
    """Binary open() mode for a redirect descriptor mode."""
    mode = mode.replace("b", "").replace("t", "")
    return mode + "b"


class _ChannelAllocator:
    """
    Allocates the OS resources behind a descriptor spec.

    Keeps track of everything it opened so a failed spawn can release it
    all, and so the child-side ends can be closed in the parent once the
    child holds them.
    """

    def __init__(self) -> None:
        self.stdio: dict[int, Any] = {STDIN: None, STDOUT: None, STDERR: None}
        self.popen_pipes: list[int] = []
        self.extra: dict[int, int] = {}
        self.parent: dict[int, IO[bytes]] = {}
        self._child_fds: list[int] = []
        self._child_files: list[IO[bytes]] = []

    def allocate(self, spec: DescriptorSpec) -> None:
        for index, descriptor in spec.items():
            self._allocate_one(index, descriptor)

    def _route(self, index: int, target: Any, fd: int) -> None:
        if index <= STDERR:
            self.stdio[index] = target
        else:
            self.extra[index] = fd

    def _allocate_one(self, index: int, descriptor: Descriptor) -> None:
        if isinstance(descriptor, Inherit):
            if index > STDERR:
                self.extra[index] = index
        elif isinstance(descriptor, Pipe):
            self._allocate_pipe(index, descriptor)
        elif isinstance(descriptor, File):
            f = open(descriptor.path, _file_mode(descriptor.mode))
            self._child_files.append(f)
            self._route(index, f, f.fileno())
        elif isinstance(descriptor, Pty):
            master, slave = os.openpty()
            self._child_fds.append(slave)
            self.parent[index] = os.fdopen(master, "r+b", buffering=0)
            self._route(index, slave, slave)
        else:
            raise ValueError(f"unsupported descriptor: {descriptor!r}")

    def _allocate_pipe(self, index: int, descriptor: Pipe) -> None:
        if index <= STDERR:
            self.stdio[index] = subprocess.PIPE
            self.popen_pipes.append(index)
            return

        r, w = os.pipe()
        child, parent = (r, w) if descriptor.child_reads else (w, r)
        self._child_fds.append(child)
        try:
            mode = "wb" if descriptor.child_reads else "rb"
            self.parent[index] = os.fdopen(parent, mode)
        except OSError:
            os.close(parent)
            raise
        self.extra[index] = child

    def close_child_side(self) -> None:
        for fd in self._child_fds:
            with contextlib.suppress(OSError):
                os.close(fd)
        for f in self._child_files:
            with contextlib.suppress(OSError):
                f.close()
        self._child_fds.clear()
        self._child_files.clear()

    def close_all(self) -> None:
        self.close_child_side()
        for pipe in self.parent.values():
            with contextlib.suppress(OSError):
                pipe.close()
        self.parent.clear()


def _drain(pipe: IO[bytes]) -> bytes:
    """Read a pipe to EOF. A pty master reporting EIO counts as EOF."""
    chunks: list[bytes] = []
    while True:
        try:
            chunk = pipe.read(CHUNK_SIZE)
        except OSError as e:
            if e.errno == errno.EIO:
                break
            raise
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class ProcessHandle:
    """
    Owns one spawned process and the parent side of its pipes.

    Pipes exist only while the handle is open; close() releases them and
    reaps the process. The exit code is None until the process has been
    observed not running.

    Example:
        with ProcessHandle("printf hello").open() as proc:
            out = proc.read(STDOUT)
        assert proc.exit_code == 0

        code, out, err = ProcessHandle.run_command("make test", work_dir="/src")
    """

    def __init__(
        self,
        command: str = "",
        descriptors: DescriptorSpec | None = None,
        work_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        options: ProcessOptions | None = None,
        lg: Logger | None = None,
    ) -> None:
        """
        Initialize the handle without starting anything.

        Args:
            command: Fully quoted shell command line
            descriptors: Channel index -> Descriptor (default: default_descriptors())
            work_dir: Directory to spawn in; empty string means unset
            env: Environment for the child; None inherits ours
            options: Process creation flags
            lg: Logger (default: a quiet library logger)
        """
        self._command = command
        self._descriptors: dict[int, Descriptor] = (
            dict(descriptors) if descriptors is not None else default_descriptors()
        )
        self._work_dir = work_dir or None
        self._env = env
        self._options = options or ProcessOptions()
        self._lg = lg if lg is not None else default_lg("proc")

        self._process: subprocess.Popen[bytes] | None = None
        self._pipes: dict[int, IO[bytes]] = {}
        self._exit_code: int | None = None
        self._final_status: ProcessStatus | None = None

    # -- configuration ---------------------------------------------------

    @property
    def command(self) -> str:
        return self._command

    def set_command(self, command: str) -> ProcessHandle:
        self._command = command
        return self

    @property
    def work_dir(self) -> str | None:
        return self._work_dir

    def set_work_dir(self, work_dir: str | None) -> ProcessHandle:
        self._work_dir = work_dir or None
        return self

    @property
    def descriptors(self) -> dict[int, Descriptor]:
        return dict(self._descriptors)

    def set_descriptor(self, index: int, descriptor: Descriptor) -> ProcessHandle:
        self._descriptors[index] = descriptor
        return self

    def set_descriptors(self, descriptors: DescriptorSpec) -> ProcessHandle:
        self._descriptors = dict(descriptors)
        return self

    @property
    def env(self) -> Mapping[str, str] | None:
        return self._env

    def set_env(self, env: Mapping[str, str] | None) -> ProcessHandle:
        self._env = env
        return self

    @property
    def options(self) -> ProcessOptions:
        return self._options

    def set_options(self, options: ProcessOptions) -> ProcessHandle:
        self._options = options
        return self

    # -- state -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._process is not None

    @property
    def process(self) -> subprocess.Popen[bytes] | None:
        return self._process

    @property
    def pid(self) -> int:
        """Process id, or 0 if nothing was ever opened."""
        if self._process is not None:
            return self._process.pid
        if self._final_status is not None:
            return self._final_status.pid
        return 0

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def pipes(self) -> dict[int, IO[bytes]]:
        """Open parent-side pipes keyed by channel index (copy)."""
        return dict(self._pipes)

    def get_pipe(self, index: int) -> IO[bytes]:
        """
        Return the parent side of an open channel.

        Raises:
            PipeError: If the channel is not open
        """
        try:
            return self._pipes[index]
        except KeyError:
            raise PipeError("channel is not open", channel=index) from None

    # -- lifecycle -------------------------------------------------------

    def _popen_args(self) -> str | list[str]:
        if self._options.shell or not is_posix():
            return self._command
        return shlex.split(self._command)

    def _spawn(self, alloc: _ChannelAllocator) -> subprocess.Popen[bytes]:
        return subprocess.Popen(
            self._popen_args(),
            shell=self._options.shell,
            stdin=alloc.stdio[STDIN],
            stdout=alloc.stdio[STDOUT],
            stderr=alloc.stdio[STDERR],
            env=dict(self._env) if self._env is not None else None,
            start_new_session=self._options.new_session,
            close_fds=not alloc.extra,
            preexec_fn=_map_extra_channels(alloc.extra) if alloc.extra else None,
        )

    def open(self) -> ProcessHandle:
        """
        Create the OS process.

        Relative paths (the command itself and file redirects) resolve
        against work_dir; the caller's working directory is restored before
        this returns, on success and on failure.

        Returns:
            self, for chaining

        Raises:
            SpawnError: If the process or one of its channels cannot be
                created; nothing allocated by the attempt stays open
            ValueError: If the command is empty or the descriptor spec is invalid
        """
        if self._process is not None:
            raise SpawnError("handle already open", pid=self._process.pid)
        if not self._command:
            raise ValueError("the command to execute cannot be empty")

        spec = filter_for_platform(self._descriptors)
        validate(spec)

        alloc = _ChannelAllocator()
        try:
            with _working_directory(self._work_dir):
                alloc.allocate(spec)
                process = self._spawn(alloc)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            alloc.close_all()
            self._lg.warning(
                "spawn failed",
                extra={
                    "command": self._command,
                    "work_dir": self._work_dir,
                    "exception": e,
                },
            )
            raise SpawnError(
                "failed to spawn process",
                command=self._command,
                work_dir=self._work_dir,
            ) from e
        except BaseException:
            alloc.close_all()
            raise

        alloc.close_child_side()

        pipes: dict[int, IO[bytes]] = dict(alloc.parent)
        popen_streams = {
            STDIN: process.stdin,
            STDOUT: process.stdout,
            STDERR: process.stderr,
        }
        for index in alloc.popen_pipes:
            stream = popen_streams[index]
            if stream is not None:
                pipes[index] = stream

        self._process = process
        self._pipes = dict(sorted(pipes.items()))
        self._exit_code = None
        self._final_status = None

        self._lg.debug(
            "spawned process",
            extra={
                "pid": process.pid,
                "command": self._command,
                "channels": list(self._pipes),
            },
        )
        return self

    def run(self, work_dir: str | None = None) -> ProcessHandle:
        """Set the working directory (if given) and open."""
        if work_dir is not None:
            self.set_work_dir(work_dir)
        return self.open()

    def __enter__(self) -> ProcessHandle:
        return self

    def __exit__(self, *args: object) -> None:
        if self._process is not None:
            self.close()

    # -- channel I/O -----------------------------------------------------

    def _close_pipe(self, index: int) -> None:
        pipe = self._pipes.pop(index, None)
        if pipe is None:
            return
        try:
            pipe.close()
        except BrokenPipeError:
            # stdin buffer flush after the child exited
            pass

    def _readable(self, index: int) -> IO[bytes]:
        pipe = self.get_pipe(index)
        if not pipe.readable():
            raise PipeError("channel is not readable by the parent", channel=index)
        return pipe

    def read_bytes(self, index: int, close: bool = True) -> bytes:
        """
        Read a channel to EOF.

        Blocks until the child closes its end (normally when it exits).

        Args:
            index: Channel index
            close: Close the channel afterwards

        Raises:
            PipeError: If the channel is not open or not readable
        """
        pipe = self._readable(index)
        try:
            data = _drain(pipe)
        finally:
            if close:
                self._close_pipe(index)
        self._lg.trace("read channel", extra={"channel": index, "bytes": len(data)})
        return data

    def read(self, index: int, close: bool = True) -> str:
        """Read a channel to EOF and decode it as text."""
        data = self.read_bytes(index, close)
        return data.decode(self._options.encoding, self._options.errors)

    def read_all(
        self, indexes: Iterable[int] | None = None, close: bool = True
    ) -> dict[int, str]:
        """
        Drain several channels concurrently.

        Each channel is read on its own thread so a child filling one
        channel's buffer cannot block while we wait on another.

        Args:
            indexes: Channels to read (default: every readable open channel)
            close: Close the channels afterwards

        Returns:
            Channel index -> decoded text
        """
        if indexes is None:
            indexes = [i for i, p in self._pipes.items() if p.readable()]
        targets = {i: self._readable(i) for i in indexes}
        if not targets:
            return {}

        try:
            with ThreadPoolExecutor(max_workers=len(targets)) as pool:
                futures = {i: pool.submit(_drain, pipe) for i, pipe in targets.items()}
                raw = {i: f.result() for i, f in futures.items()}
        finally:
            if close:
                for i in targets:
                    self._close_pipe(i)

        return {
            i: data.decode(self._options.encoding, self._options.errors)
            for i, data in raw.items()
        }

    def write(self, index: int, data: str | bytes, close: bool = False) -> int:
        """
        Write to a channel the child reads from.

        Returns:
            Number of bytes written

        Raises:
            PipeError: If the channel is not open, not writable, or the
                child closed its end
        """
        pipe = self.get_pipe(index)
        if not pipe.writable():
            raise PipeError("channel is not writable by the parent", channel=index)
        if isinstance(data, str):
            data = data.encode(self._options.encoding, self._options.errors)
        try:
            pipe.write(data)
            pipe.flush()
        except BrokenPipeError as e:
            self._close_pipe(index)
            raise PipeError("child closed the channel", channel=index) from e
        if close:
            self._close_pipe(index)
        return len(data)

    def close_pipes(self, indexes: Iterable[int] | None = None) -> None:
        """Close the given channels (default: all). Missing ones are skipped."""
        for index in list(indexes if indexes is not None else self._pipes):
            self._close_pipe(index)

    # -- termination -----------------------------------------------------

    def close(self) -> int:
        """
        Close all channels, wait for the process to end and reap it.

        Safe on a process that was signaled but not reaped yet: it is reaped
        here and the exit code is the negative signal number.

        Returns:
            Exit code (negative signal number if the process was killed)

        Raises:
            CloseError: If there is no process resource (never opened or
                already closed)
        """
        process = self._process
        if process is None:
            raise CloseError("no process to close", command=self._command)

        self.close_pipes()
        code = process.wait()

        self._exit_code = code
        self._final_status = ProcessStatus.from_returncode(process.pid, code)
        self._process = None

        self._lg.debug("closed process", extra={"pid": process.pid, "exit_code": code})
        return code

    def terminate(self, sig: SignalLike = signal.SIGTERM) -> bool:
        """
        Send a termination signal to the process.

        Returns:
            True if the signal was sent; False if the process is gone,
            closed, or the platform cannot deliver this signal
        """
        process = self._process
        if process is None or process.poll() is not None:
            return False

        signum = resolve_signal(sig)
        if has_posix_signals():
            try:
                os.kill(process.pid, signum)
            except ProcessLookupError:
                return False
        elif signum in (signal.SIGTERM, getattr(signal, "SIGKILL", None)):
            process.terminate()
        else:
            return False

        self._lg.debug(
            "terminated process", extra={"pid": process.pid, "signal": signum.name}
        )
        return True

    def _peek_stop_signal(self, pid: int) -> int:
        """Peek at a stopped state without consuming the exit status."""
        if not has_waitid():
            return 0
        try:
            info = os.waitid(
                os.P_PID, pid, os.WEXITED | os.WSTOPPED | os.WNOHANG | os.WNOWAIT
            )
        except ChildProcessError:
            return 0
        if info is not None and info.si_code == os.CLD_STOPPED:
            return info.si_status
        return 0

    def get_status(self) -> ProcessStatus:
        """
        Snapshot of the process state.

        After close() the final status is returned.

        Raises:
            ProcError: If the handle was never opened
        """
        process = self._process
        if process is None:
            if self._final_status is not None:
                return self._final_status
            raise ProcError("process not open", command=self._command)

        stop_signal = 0
        if process.returncode is None:
            stop_signal = self._peek_stop_signal(process.pid)
        code = process.poll()
        if code is not None:
            self._exit_code = code
            return ProcessStatus.from_returncode(process.pid, code)

        return ProcessStatus(
            pid=process.pid,
            running=True,
            stopped=stop_signal != 0,
            stop_signal=stop_signal,
        )

    # -- one-shot helpers ------------------------------------------------

    @classmethod
    def run_command(
        cls,
        command: str,
        work_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        lg: Logger | None = None,
    ) -> tuple[int, str, str]:
        """
        Run a command to completion, capturing stdout and stderr.

        Stdin (and the secret channel) are closed right away; stdout and
        stderr are drained concurrently.

        Returns:
            (exit_code, output, error)
        """
        handle = cls(command, default_descriptors(), work_dir=work_dir, env=env, lg=lg)
        handle.open()
        try:
            handle.close_pipes([i for i, p in handle.pipes.items() if p.writable()])
            captured = handle.read_all([STDOUT, STDERR])
        finally:
            code = handle.close()
        return code, captured.get(STDOUT, ""), captured.get(STDERR, "")

    @classmethod
    def run_editor(
        cls,
        editor: str,
        filepath: str = "",
        work_dir: str | None = None,
        lg: Logger | None = None,
    ) -> int:
        """
        Run an interactive program on the controlling terminal.

        Example:
            ProcessHandle.run_editor("vim", "notes.txt")

        Returns:
            Exit code of the editor
        """
        command = f"{editor} {filepath}" if filepath else editor
        handle = cls(command, tty_descriptors(), work_dir=work_dir, lg=lg)
        return handle.open().close()

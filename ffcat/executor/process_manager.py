"""Process management with extra inherited descriptors.

:class:`ExtraFdProcess` starts a child like ``subprocess.Popen`` but can
also hand it any number of additional readable or writable streams. Each
stream shows up in the child as descriptor ``3 + n`` where ``n`` is the
number of streams bound before it, which is what ffmpeg's ``pipe:N``
protocol expects::

    proc = ExtraFdProcess("ffmpeg")
    fd = proc.bind_input(io.BytesIO(wav_bytes))
    proc.args += ["-i", f"pipe:{fd}", "out.mp3"]
    proc.run()

Streams backed by a real descriptor are passed straight through. Anything
else gets an OS pipe plus a background copy task that is joined in
:meth:`ExtraFdProcess.wait`, so every byte has been delivered by the time
``wait`` returns.

Child descriptors are laid out with ``os.posix_spawnp`` file actions,
which makes this module POSIX only.
"""

import logging
import os
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Sequence

from ..errors import BindError, CopyError, ExitError, ProcessError, StartError
from .scope import CancelScope

logger = logging.getLogger("ffcat")

COPY_BUFSIZE = 64 * 1024

# Signals Python ignores that a child should get back with default handling,
# same set as subprocess' restore_signals.
_RESTORE_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGPIPE", "SIGXFZ", "SIGXFSZ") if hasattr(signal, name)
)


class ProcessUnit(ABC):
    """Something that can be started and later waited on.

    Both methods raise on failure. A unit that failed to start must also
    fail when waited on.
    """

    @abstractmethod
    def start(self) -> None:
        """Launch the unit without waiting for it to finish."""

    @abstractmethod
    def wait(self) -> None:
        """Block until the unit is done."""

    def run(self) -> None:
        """Start and wait."""
        self.start()
        self.wait()


def _fileno(stream) -> Optional[int]:
    """Return the OS descriptor behind ``stream``, or None if it has none."""
    if isinstance(stream, int):
        return stream
    fileno = getattr(stream, "fileno", None)
    if fileno is None:
        return None
    try:
        return fileno()
    except (OSError, ValueError):
        # io.UnsupportedOperation for BytesIO and captured streams
        return None


class CloseOnce:
    """Closable wrapper whose ``close`` only acts the first time.

    Wraps either a raw descriptor (``int``) or anything with ``close()``.
    A failing close raises on the first call only. Other attributes are
    forwarded to the wrapped object, so a wrapped file can be read and
    written as usual.
    """

    def __init__(self, resource):
        self._resource = resource
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if isinstance(self._resource, int):
            os.close(self._resource)
        else:
            self._resource.close()

    def fileno(self) -> int:
        if isinstance(self._resource, int):
            if self._closed:
                raise ValueError("I/O operation on closed descriptor")
            return self._resource
        return self._resource.fileno()

    def __getattr__(self, name):
        if name == "_resource":
            raise AttributeError(name)
        return getattr(self._resource, name)

    def __enter__(self) -> "CloseOnce":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"CloseOnce({self._resource!r}, {state})"


def _as_closer(closer) -> CloseOnce:
    return closer if isinstance(closer, CloseOnce) else CloseOnce(closer)


def _copy_stream(dst, src) -> None:
    flush = getattr(dst, "flush", None)
    while True:
        chunk = src.read(COPY_BUFSIZE)
        if not chunk:
            return
        dst.write(chunk)
        if flush is not None:
            flush()


def _spawn_file_actions(fds: Sequence[int]) -> list[tuple]:
    """File actions making ``fds[i]`` descriptor ``i`` in the child.

    Every source is first duplicated above all numbers involved, so a
    source that equals another entry's target is never overwritten
    before it has been moved into place.
    """
    base = max(list(fds) + [len(fds)]) + 1
    actions = []
    for i, fd in enumerate(fds):
        actions.append((os.POSIX_SPAWN_DUP2, fd, base + i))
    for i in range(len(fds)):
        actions.append((os.POSIX_SPAWN_DUP2, base + i, i))
    for i in range(len(fds)):
        actions.append((os.POSIX_SPAWN_CLOSE, base + i))
    return actions


class ExtraFdProcess(ProcessUnit):
    """A child process with extra streams bound to descriptors 3 and up.

    ``stdin``, ``stdout`` and ``stderr`` may each be ``None`` (``/dev/null``),
    a descriptor or file with a working ``fileno()`` (passed directly), or
    any other binary stream (copied through a pipe). When a ``scope`` is
    given the process is killed as soon as the scope is cancelled.

    Descriptor numbers assume nothing else is inherited above stderr;
    callers that make their own descriptors inheritable must avoid
    colliding with them.
    """

    def __init__(
        self,
        program: str,
        *args: str,
        stdin=None,
        stdout=None,
        stderr=None,
        scope: Optional[CancelScope] = None,
        env: Optional[dict[str, str]] = None,
    ):
        self.args = [str(program), *(str(a) for a in args)]
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr
        self.scope = scope
        self.env = env

        self.pid: Optional[int] = None
        self.returncode: Optional[int] = None

        self._extra_fds: list[int] = []
        self._close_after_start: list[CloseOnce] = []
        self._close_after_wait: list[CloseOnce] = []
        self._copy_fns: list[Callable[[], None]] = []
        self._copy_futures: list[Future] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._waited = False

    @property
    def program(self) -> str:
        return self.args[0]

    # ------------------------------------------------------------------ #
    #   Descriptor binding                                               #
    # ------------------------------------------------------------------ #

    def _pipe(self) -> tuple[int, int]:
        try:
            return os.pipe()
        except OSError as exc:
            raise BindError(f"failed to create pipe for {self.program}: {exc}") from exc

    def _attach(self, fd: int) -> int:
        self._extra_fds.append(fd)
        return len(self._extra_fds) + 2

    def extra_in_pipe(self) -> tuple[CloseOnce, int]:
        """Create a pipe readable by the child.

        Returns the host's write end and the child's descriptor number.
        Closing the write end signals EOF to the child; it is closed at
        the latest when :meth:`wait` finishes.
        """
        read_fd, write_fd = self._pipe()
        child_fd = self._attach(read_fd)
        self._close_after_start.append(CloseOnce(read_fd))
        writer = CloseOnce(open(write_fd, "wb"))
        self._close_after_wait.append(writer)
        logger.debug("%s: extra input pipe on fd %d", self.program, child_fd)
        return writer, child_fd

    def extra_out_pipe(self) -> tuple[CloseOnce, int]:
        """Create a pipe writable by the child.

        Returns the host's read end and the child's descriptor number.
        """
        read_fd, write_fd = self._pipe()
        child_fd = self._attach(write_fd)
        self._close_after_start.append(CloseOnce(write_fd))
        reader = CloseOnce(open(read_fd, "rb", buffering=0))
        self._close_after_wait.append(reader)
        logger.debug("%s: extra output pipe on fd %d", self.program, child_fd)
        return reader, child_fd

    def bind_input(self, reader) -> int:
        """Make ``reader`` readable by the child and return its descriptor number."""
        fd = _fileno(reader)
        if fd is not None:
            child_fd = self._attach(fd)
            logger.debug("%s: fd %d passed as input fd %d", self.program, fd, child_fd)
            return child_fd

        writer, child_fd = self.extra_in_pipe()
        self._copy_fns.append(self._copy_in(reader, writer))
        return child_fd

    def bind_output(self, writer) -> int:
        """Make ``writer`` writable by the child and return its descriptor number."""
        fd = _fileno(writer)
        if fd is not None:
            child_fd = self._attach(fd)
            logger.debug("%s: fd %d passed as output fd %d", self.program, fd, child_fd)
            return child_fd

        reader, child_fd = self.extra_out_pipe()
        self._copy_fns.append(self._copy_out(reader, writer))
        return child_fd

    def close_after_start(self, closer) -> None:
        """Close ``closer`` (a descriptor or closable) once the child is running."""
        self._close_after_start.append(_as_closer(closer))

    def close_after_wait(self, closer) -> None:
        """Close ``closer`` (a descriptor or closable) once the child has been waited on."""
        self._close_after_wait.append(_as_closer(closer))

    def close_descriptors(self) -> None:
        """Close everything registered, used when the process never starts."""
        self._close_all(self._close_after_start)
        self._close_all(self._close_after_wait)

    def _close_all(self, closers: list[CloseOnce]) -> None:
        for closer in closers:
            try:
                closer.close()
            except OSError as exc:
                logger.debug("%s: close of %r failed: %s", self.program, closer, exc)

    # ------------------------------------------------------------------ #
    #   Copy tasks                                                       #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _copy_in(reader, writer: CloseOnce, ignore_broken_pipe: bool = False) -> Callable[[], None]:
        def copy() -> None:
            try:
                try:
                    _copy_stream(writer, reader)
                finally:
                    writer.close()
            except BrokenPipeError:
                # Child stopped reading stdin early
                if not ignore_broken_pipe:
                    raise

        return copy

    @staticmethod
    def _copy_out(reader: CloseOnce, writer) -> Callable[[], None]:
        def copy() -> None:
            try:
                _copy_stream(writer, reader)
            finally:
                reader.close()

        return copy

    def _child_stdio(self, stream, index: int) -> int:
        if stream is None:
            try:
                fd = os.open(os.devnull, os.O_RDONLY if index == 0 else os.O_WRONLY)
            except OSError as exc:
                raise BindError(f"failed to open {os.devnull}: {exc}") from exc
            self._close_after_start.append(CloseOnce(fd))
            return fd

        fd = _fileno(stream)
        if fd is not None:
            return fd

        read_fd, write_fd = self._pipe()
        if index == 0:
            self._close_after_start.append(CloseOnce(read_fd))
            writer = CloseOnce(open(write_fd, "wb"))
            self._close_after_wait.append(writer)
            self._copy_fns.append(self._copy_in(stream, writer, ignore_broken_pipe=True))
            return read_fd

        self._close_after_start.append(CloseOnce(write_fd))
        reader = CloseOnce(open(read_fd, "rb", buffering=0))
        self._close_after_wait.append(reader)
        self._copy_fns.append(self._copy_out(reader, stream))
        return write_fd

    # ------------------------------------------------------------------ #
    #   Lifecycle                                                        #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Launch the child.

        Raises:
            StartError: If the process could not be spawned or the scope
                is already cancelled. Every registered descriptor has
                been closed when this is raised.
            BindError: If a pipe for a standard stream could not be made.
        """
        if self.pid is not None:
            raise StartError(f"{self.program} already started")

        try:
            if self.scope is not None and self.scope.cancelled:
                raise StartError(f"{self.program} not started: cancelled")

            stdio = [
                self._child_stdio(self.stdin, 0),
                self._child_stdio(self.stdout, 1),
                self._child_stdio(self.stderr, 2),
            ]
            file_actions = _spawn_file_actions(stdio + self._extra_fds)
            try:
                self.pid = os.posix_spawnp(
                    self.program,
                    self.args,
                    self.env if self.env is not None else os.environ,
                    file_actions=file_actions,
                    setsigdef=_RESTORE_SIGNALS,
                )
            except OSError as exc:
                raise StartError(f"failed to start {self.program}: {exc}") from exc
        except ProcessError:
            self.close_descriptors()
            raise

        logger.debug(
            "Started %s (pid %d, %d extra fds)", self.program, self.pid, len(self._extra_fds)
        )
        self._close_all(self._close_after_start)

        if self._copy_fns:
            self._executor = ThreadPoolExecutor(
                max_workers=len(self._copy_fns),
                thread_name_prefix=f"ffcat-copy-{self.pid}",
            )
            self._copy_futures = [self._executor.submit(fn) for fn in self._copy_fns]

        if self.scope is not None:
            self.scope.add_callback(self.kill)

    def wait(self) -> None:
        """Wait for the child and all copy tasks, then release descriptors.

        Raises:
            ExitError: If the child exited non-zero or was killed.
            CopyError: If the child exited cleanly but a copy task failed.
            ProcessError: If the process was never started.
        """
        if self.pid is None:
            raise ProcessError(f"{self.program} not started")
        if self._waited:
            raise ProcessError(f"{self.program} already waited on")
        self._waited = True

        # Wait without reaping so kill() never signals a recycled pid.
        os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOWAIT)
        with self._lock:
            _, status = os.waitpid(self.pid, 0)
            self.returncode = os.waitstatus_to_exitcode(status)
        if self.scope is not None:
            self.scope.remove_callback(self.kill)

        copy_error = None
        for future in self._copy_futures:
            exc = future.exception()
            if exc is not None and copy_error is None:
                copy_error = exc
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._close_all(self._close_after_wait)

        logger.debug("%s (pid %d) exited with %d", self.program, self.pid, self.returncode)

        if self.returncode != 0:
            raise ExitError(self.args, self.returncode)
        if copy_error is not None:
            raise CopyError(f"{self.program}: stream copy failed: {copy_error}") from copy_error

    def kill(self) -> None:
        """Send SIGKILL unless the child has already been reaped."""
        with self._lock:
            if self.pid is None or self.returncode is not None:
                return
            try:
                os.kill(self.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        logger.debug("Killed %s (pid %d)", self.program, self.pid)


class PopenUnit(ProcessUnit):
    """Adapt a plain ``subprocess.Popen`` invocation to start/wait.

    Useful for putting helper processes that need no extra descriptors
    into a :class:`~ffcat.executor.group.ProcessGroup`.
    """

    def __init__(self, args: Sequence[str], scope: Optional[CancelScope] = None, **popen_kwargs):
        self.args = [str(a) for a in args]
        self.scope = scope
        self.popen_kwargs = popen_kwargs
        self.process: Optional[subprocess.Popen] = None

    def start(self) -> None:
        if self.scope is not None and self.scope.cancelled:
            raise StartError(f"{self.args[0]} not started: cancelled")
        try:
            self.process = subprocess.Popen(self.args, **self.popen_kwargs)
        except OSError as exc:
            raise StartError(f"failed to start {self.args[0]}: {exc}") from exc
        if self.scope is not None:
            self.scope.add_callback(self.process.kill)

    def wait(self) -> None:
        if self.process is None:
            raise ProcessError(f"{self.args[0]} not started")
        returncode = self.process.wait()
        if self.scope is not None:
            self.scope.remove_callback(self.process.kill)
        if returncode != 0:
            raise ExitError(self.args, returncode)

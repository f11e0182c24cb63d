"""Error types raised by the process and command layers."""

from typing import Optional, Sequence


class ProcessError(RuntimeError):
    """Base error for everything that goes wrong running ffmpeg/ffprobe.

    ``stderr_tail`` holds the last lines the child wrote to stderr when
    they are known; they are appended to the message so operators get
    the actual ffmpeg complaint instead of just an exit code.
    """

    def __init__(self, message: str, stderr_tail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stderr_tail = stderr_tail

    def __str__(self) -> str:
        if self.stderr_tail:
            return f"{self.message}: {self.stderr_tail.rstrip()}"
        return self.message


class BindError(ProcessError):
    """Creating a pipe for an extra stream failed."""


class StartError(ProcessError):
    """The child process could not be launched."""


class CopyError(ProcessError):
    """A background copy between a stream and a pipe failed."""


class ExitError(ProcessError):
    """The child exited non-zero or was killed by a signal."""

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stderr_tail: Optional[str] = None,
    ):
        if returncode < 0:
            message = f"{args[0]} killed by signal {-returncode}"
        else:
            message = f"{args[0]} failed (exit {returncode})"
        super().__init__(message, stderr_tail)
        self.cmd = list(args)
        self.returncode = returncode


class DecodeError(ProcessError):
    """Structured output (ffprobe JSON) could not be decoded.

    ``raw`` keeps the undecoded text so callers can still dig into it.
    """

    def __init__(self, message: str, raw: str = "", stderr_tail: Optional[str] = None):
        super().__init__(message, stderr_tail)
        self.raw = raw


class ResolutionError(ProcessError, ValueError):
    """A stream map refers to an input that is not part of the command."""

"""FFmpeg command model and argument compiler.

An :class:`FFmpegCommand` is a declarative description of inputs,
outputs, stream maps and a filter graph. Compiling it is deterministic:
option maps are always emitted in sorted key order, so the same model
yields byte-identical arguments every time.

Inputs and outputs are either paths or in-process streams. Streams are
bound to extra descriptors of the ffmpeg process and referenced as
``pipe:N``.
"""

import logging
import os
import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..config import FFmpegConfig, get_config
from ..errors import ProcessError, ResolutionError
from ..metadata import Metadata
from .linebuffer import LastLines, MultiWriter
from .process_manager import ExtraFdProcess, ProcessUnit
from .progress import Progress, ProgressDecoder
from .scope import CancelScope

logger = logging.getLogger("ffcat")

_FILTER_VALUE_ESCAPE = re.compile(r"[,:]")


def escape_filter_value(value: Any) -> str:
    """Backslash-escape ``,`` and ``:`` in a filter option value."""
    return _FILTER_VALUE_ESCAPE.sub(r"\\\g<0>", str(value))


def _label(label: str) -> str:
    return "[" + label.replace("]", "\\]") + "]"


def option_args(options: dict[str, Any], suffix: str = "") -> list[str]:
    """{"b": 2, "a": 1} -> ["-a<suffix>", "1", "-b<suffix>", "2"]"""
    args = []
    for key, value in sorted(options.items()):
        if not key.startswith("-"):
            key = "-" + key
        args.extend([key + suffix, str(value)])
    return args


def duration_to_position(seconds: float) -> str:
    """Format seconds as an ffmpeg position, ``H:MM:SS`` (truncated)."""
    n = int(seconds)
    return f"{n // 3600}:{n // 60 % 60:02d}:{n % 60:02d}"


def _is_path(file: Any) -> bool:
    return isinstance(file, (str, os.PathLike))


@dataclass
class Filter:
    """Represents a single FFmpeg filter."""
    name: str
    options: dict[str, Any] = field(default_factory=dict)
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    def to_string(self) -> str:
        """Convert filter to FFmpeg filter string."""
        parts = [_label(inp) for inp in self.inputs]

        # Options in sorted order so output is stable
        option_str = ":".join(
            f"{k}={escape_filter_value(v)}" for k, v in sorted(self.options.items())
        )
        parts.append(f"{self.name}={option_str}")

        parts.extend(_label(out) for out in self.outputs)
        return "".join(parts)


@dataclass
class FilterChain:
    """A chain of filters connected in sequence."""
    filters: list[Filter] = field(default_factory=list)

    def add(self, filter_obj: Filter) -> "FilterChain":
        """Add a filter to the chain."""
        self.filters.append(filter_obj)
        return self

    def add_filter(
        self,
        name: str,
        options: Optional[dict] = None,
        inputs: Optional[list[str]] = None,
        outputs: Optional[list[str]] = None,
    ) -> "FilterChain":
        """Add a filter by parameters."""
        self.filters.append(Filter(
            name=name,
            options=options or {},
            inputs=inputs or [],
            outputs=outputs or [],
        ))
        return self

    def to_string(self) -> str:
        """Convert filter chain to FFmpeg filter string."""
        return ",".join(f.to_string() for f in self.filters)


@dataclass
class FilterGraph:
    """Chains making up a ``-filter_complex`` graph."""
    chains: list[FilterChain] = field(default_factory=list)

    def add_chain(self, *filters: Filter) -> FilterChain:
        """Append a new chain made of ``filters`` and return it."""
        chain = FilterChain(list(filters))
        self.chains.append(chain)
        return chain

    def to_string(self) -> str:
        """Convert the graph to the ``-filter_complex`` argument."""
        return ";".join(chain.to_string() for chain in self.chains)


# Inputs, outputs and maps compare by identity: maps point at a specific
# Input object, which is resolved to its position when compiling.

@dataclass(eq=False)
class Input:
    """An input file: path, or readable binary stream."""
    file: Any
    format: str = ""
    options: dict[str, Any] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)


@dataclass(eq=False)
class Map:
    """Selects a stream for an output slot (``-map``) and how to encode it."""
    input: Optional[Input] = None
    specifier: str = ""  # "a:0", "0", "[label]"
    codec: str = ""
    options: dict[str, Any] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)


@dataclass(eq=False)
class Output:
    """An output file: path, or writable binary stream."""
    file: Any
    maps: list[Map] = field(default_factory=list)
    format: str = ""
    metadata: Optional[Metadata | dict[str, str]] = None
    options: dict[str, Any] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)


@dataclass(eq=False)
class FFmpegCommand(ProcessUnit):
    """A complete ffmpeg invocation.

    ``progress`` is called with a :class:`Progress` for every report ffmpeg
    writes. ``stderr`` receives a copy of everything ffmpeg writes to
    stderr; the last ``stderr_buffer_lines`` lines are kept regardless and
    attached to errors raised by :meth:`wait`. ``close_after_start`` and
    ``close_after_wait`` take extra descriptors or closables, typically the
    ends of an ``os.pipe()`` connecting two commands.
    """
    inputs: list[Input] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    filter_graph: Optional[FilterGraph] = None
    flags: list[str] = field(default_factory=list)

    scope: Optional[CancelScope] = None
    progress: Optional[Callable[[Progress], None]] = None
    stderr: Any = None
    stderr_buffer_lines: Optional[int] = None
    close_after_start: list[Any] = field(default_factory=list)
    close_after_wait: list[Any] = field(default_factory=list)
    config: FFmpegConfig = field(default_factory=get_config)

    _process: Optional[ExtraFdProcess] = field(default=None, init=False, repr=False)
    _stderr_lines: Optional[LastLines] = field(default=None, init=False, repr=False)
    _progress_decoder: Optional[ProgressDecoder] = field(default=None, init=False, repr=False)

    def _build_args(
        self,
        input_file: Callable[[int, Any], str],
        output_file: Callable[[int, Any], str],
        progress_file: Optional[str] = None,
    ) -> list[str]:
        args = ["-nostdin", "-hide_banner"]
        args.extend(self.flags)

        if progress_file is not None:
            args.extend(["-progress", progress_file])

        if self.filter_graph is not None:
            args.extend(["-filter_complex", self.filter_graph.to_string()])

        positions: dict[Input, int] = {}
        for index, inp in enumerate(self.inputs):
            positions[inp] = index
            args.extend(option_args(inp.options))
            args.extend(inp.flags)
            if inp.format:
                args.extend(["-f", inp.format])
            args.append("-i")
            if _is_path(inp.file):
                args.append(os.fspath(inp.file))
            else:
                args.append(input_file(index, inp.file))

        for index, out in enumerate(self.outputs):
            for stream_index, m in enumerate(out.maps):
                selector = []
                if m.input is not None:
                    if m.input not in positions:
                        raise ResolutionError(
                            f"map {stream_index} of output {index} refers to an input "
                            f"not in this command: {m.input!r}"
                        )
                    selector.append(str(positions[m.input]))
                if m.specifier:
                    selector.append(m.specifier)
                args.extend(["-map", ":".join(selector)])

                if m.codec:
                    args.extend([f"-codec:{stream_index}", m.codec])
                args.extend(option_args(m.options, f":{stream_index}"))
                args.extend(m.flags)

            if out.format:
                args.extend(["-f", out.format])
            if out.metadata is not None:
                tags = out.metadata.to_map() if isinstance(out.metadata, Metadata) else out.metadata
                for key, value in sorted(tags.items()):
                    args.extend(["-metadata", f"{key}={value}"])
            args.extend(option_args(out.options))
            args.extend(out.flags)

            if _is_path(out.file):
                args.append(os.fspath(out.file))
            else:
                args.append(output_file(index, out.file))

        return args

    def args(self) -> list[str]:
        """Compiled arguments (without the program) with stream placeholders.

        Streams render as ``pipe-input-index:<i>`` / ``pipe-output-index:<i>``
        and the progress output as ``pipe-progress``. Nothing is bound or
        started.
        """
        return self._build_args(
            lambda index, _: f"pipe-input-index:{index}",
            lambda index, _: f"pipe-output-index:{index}",
            "pipe-progress" if self.progress is not None else None,
        )

    def to_string(self) -> str:
        """Shell-quoted command line, for logging."""
        return shlex.join([self.config.ffmpeg_path, *self.args()])

    def start(self) -> None:
        """Bind streams, compile the arguments and launch ffmpeg.

        Raises:
            ResolutionError: If a map refers to an input not in ``inputs``.
            BindError: If a pipe for a stream could not be created.
            StartError: If ffmpeg could not be launched.
            ValueError: If ``stderr_buffer_lines`` is below one.
        """
        process = ExtraFdProcess(self.config.ffmpeg_path, scope=self.scope)
        self._process = process
        for closer in self.close_after_start:
            process.close_after_start(closer)
        for closer in self.close_after_wait:
            process.close_after_wait(closer)

        try:
            nr_lines = self.stderr_buffer_lines or self.config.stderr_buffer_lines
            self._stderr_lines = LastLines(nr_lines)

            progress_file = None
            if self.progress is not None:
                self._progress_decoder = ProgressDecoder(self.progress)
                progress_file = f"pipe:{process.bind_output(self._progress_decoder)}"

            args = self._build_args(
                lambda _, reader: f"pipe:{process.bind_input(reader)}",
                lambda _, writer: f"pipe:{process.bind_output(writer)}",
                progress_file,
            )
        except Exception:
            process.close_descriptors()
            raise

        writers = [self._stderr_lines]
        if self.stderr is not None:
            writers.append(self.stderr)
        process.stderr = MultiWriter(*writers)
        process.args.extend(args)

        logger.debug("[ffmpeg] Running: %s", shlex.join(process.args))
        process.start()

    def wait(self) -> None:
        """Wait for ffmpeg to finish.

        Errors carry the last stderr lines in ``stderr_tail``. Note that
        the message may include command details that are sensitive.

        Raises:
            ExitError: If ffmpeg failed.
            CopyError: If a stream copy failed while ffmpeg succeeded.
        """
        if self._process is None:
            raise ProcessError("ffmpeg command not started")
        try:
            self._process.wait()
        except ProcessError as exc:
            self._close_line_buffers()
            exc.stderr_tail = self.stderr_buffer()
            raise
        self._close_line_buffers()

    def _close_line_buffers(self) -> None:
        if self._progress_decoder is not None:
            self._progress_decoder.close()
        if self._stderr_lines is not None:
            self._stderr_lines.close()

    def stderr_buffer(self) -> str:
        """The last stderr lines, empty before start."""
        if self._stderr_lines is None:
            return ""
        return self._stderr_lines.render()

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None


class CommandBuilder:
    """Fluent builder for :class:`FFmpegCommand`.

    Output-level calls (``map``, ``metadata``, ``output_options``) apply to
    the most recently added output.
    """

    def __init__(self, config: Optional[FFmpegConfig] = None):
        self._config = config
        self.reset()

    def reset(self) -> "CommandBuilder":
        """Reset the builder to initial state."""
        if self._config is not None:
            self._command = FFmpegCommand(config=self._config)
        else:
            self._command = FFmpegCommand()
        return self

    def global_flags(self, *flags: str) -> "CommandBuilder":
        """Add global flags, e.g. ``"-y"`` or ``"-loglevel", "error"``."""
        self._command.flags.extend(flags)
        return self

    def input(
        self,
        file: Any,
        format: str = "",
        options: Optional[dict] = None,
        flags: Optional[list[str]] = None,
    ) -> "CommandBuilder":
        """Add an input file or readable stream."""
        self._command.inputs.append(
            Input(file=file, format=format, options=options or {}, flags=flags or [])
        )
        return self

    def filter_chain(self, *filters: Filter | str) -> "CommandBuilder":
        """Append a chain to the filter graph; strings are bare filter names."""
        if self._command.filter_graph is None:
            self._command.filter_graph = FilterGraph()
        self._command.filter_graph.add_chain(
            *(Filter(f) if isinstance(f, str) else f for f in filters)
        )
        return self

    def output(
        self,
        file: Any,
        format: str = "",
        flags: Optional[list[str]] = None,
    ) -> "CommandBuilder":
        """Add an output file or writable stream."""
        self._command.outputs.append(Output(file=file, format=format, flags=flags or []))
        return self

    def _last_output(self) -> Output:
        if not self._command.outputs:
            raise ValueError("add an output first")
        return self._command.outputs[-1]

    def map(
        self,
        specifier: str = "",
        input: Optional[int] = None,
        codec: str = "",
        **options,
    ) -> "CommandBuilder":
        """Map a stream into the last output.

        ``input`` is the index of an input added earlier.
        """
        inp = None
        if input is not None:
            if not 0 <= input < len(self._command.inputs):
                raise ResolutionError(f"no input with index {input}")
            inp = self._command.inputs[input]
        self._last_output().maps.append(
            Map(input=inp, specifier=specifier, codec=codec, options=options)
        )
        return self

    def metadata(self, **tags: str) -> "CommandBuilder":
        """Set standard metadata tags on the last output.

        Raises:
            ValueError: If a tag is not one of ``Metadata.KEYS``; set
                ``Output.metadata`` to a dict for other tags.
        """
        unknown = sorted(set(tags) - set(Metadata.KEYS))
        if unknown:
            raise ValueError(f"Unknown metadata tags: {', '.join(unknown)}")
        out = self._last_output()
        if isinstance(out.metadata, dict):
            out.metadata = {**out.metadata, **Metadata(**tags).to_map()}
        else:
            out.metadata = Metadata(**tags).merge(out.metadata or Metadata())
        return self

    def output_options(self, **options) -> "CommandBuilder":
        """Add ``-key value`` options to the last output."""
        self._last_output().options.update(options)
        return self

    def progress(self, callback: Callable[[Progress], None]) -> "CommandBuilder":
        """Receive progress reports while running."""
        self._command.progress = callback
        return self

    def stderr(self, writer: Any) -> "CommandBuilder":
        """Tee ffmpeg's stderr into ``writer``."""
        self._command.stderr = writer
        return self

    def scope(self, scope: CancelScope) -> "CommandBuilder":
        """Kill ffmpeg when ``scope`` is cancelled."""
        self._command.scope = scope
        return self

    def build(self) -> FFmpegCommand:
        """Return the command built so far."""
        return self._command

    def build_args(self) -> list[str]:
        """Build and return the argument list (with stream placeholders)."""
        return self._command.args()

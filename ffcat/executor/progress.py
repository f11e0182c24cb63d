"""Decoding of ffmpeg's ``-progress`` output.

ffmpeg writes blocks of ``key=value`` lines, each block ending with a
``progress`` line::

    frame=241
    fps=79.81
    stream_0_1_q=0.0
    stream_0_1_psnr_y=62.39
    bitrate= 107.1kbits/s
    total_size=116071
    out_time_us=8674000
    out_time_ms=8674000
    out_time=00:00:08.674000
    dup_frames=0
    drop_frames=0
    speed=2.87x
    progress=continue
"""

import re
from dataclasses import dataclass, field
from typing import Callable

from .linebuffer import LineBuffer

_NUMERIC_EDGES = re.compile(r"^[^\d.]+|[^\d.]+$")


@dataclass
class ProgressStream:
    """Quality metrics for one encoded stream."""
    q: float = 0.0
    psnr_y: float = 0.0
    psnr_u: float = 0.0
    psnr_v: float = 0.0
    psnr_all: float = 0.0


@dataclass
class ProgressOutput:
    """Per-stream metrics of one output."""
    streams: list[ProgressStream] = field(default_factory=list)


@dataclass
class Progress:
    """One complete progress report."""
    frame: int = 0
    fps: float = 0.0
    outputs: list[ProgressOutput] = field(default_factory=list)
    bitrate: float = 0.0  # bits/s
    total_size: int = 0
    out_time_us: int = 0
    out_time_ms: int = 0
    out_time: str = ""
    dup_frames: int = 0
    drop_frames: int = 0
    speed: float = 0.0
    progress: str = ""

    @property
    def done(self) -> bool:
        return self.progress == "end"


_INT_FIELDS = ("frame", "total_size", "out_time_us", "out_time_ms", "dup_frames", "drop_frames")
_FLOAT_FIELDS = ("fps", "speed")
_STREAM_METRICS = ("q", "psnr_y", "psnr_u", "psnr_v", "psnr_all")


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def parse_progress(progress: Progress, line: str) -> bool:
    """Apply one progress line to ``progress``.

    Returns True when the line was the ``progress`` key, i.e. the record
    is complete. Lines without ``=`` are ignored.
    """
    line = line.rstrip("\r\n")
    if "=" not in line:
        return False

    name, raw_value = line.split("=", 1)
    value = _NUMERIC_EDGES.sub("", raw_value)

    if name in _INT_FIELDS:
        setattr(progress, name, _to_int(value))
    elif name in _FLOAT_FIELDS:
        setattr(progress, name, _to_float(value))
    elif name == "bitrate":
        scale = 1000.0 if raw_value.endswith("kbits/s") else 1.0
        progress.bitrate = _to_float(value) * scale
    elif name == "out_time":
        progress.out_time = raw_value
    elif name == "progress":
        progress.progress = raw_value
    elif name.startswith("stream_"):
        _parse_stream_metric(progress, name, value)

    return name == "progress"


def _parse_stream_metric(progress: Progress, name: str, value: str) -> None:
    # stream_<output>_<stream>_<metric>, metric may itself contain "_"
    parts = name.split("_", 3)
    if len(parts) != 4:
        return
    output_index = _to_int(parts[1])
    stream_index = _to_int(parts[2])
    metric = parts[3]
    if output_index < 0 or stream_index < 0:
        return

    while output_index >= len(progress.outputs):
        progress.outputs.append(ProgressOutput())
    streams = progress.outputs[output_index].streams
    while stream_index >= len(streams):
        streams.append(ProgressStream())

    if metric in _STREAM_METRICS:
        setattr(streams[stream_index], metric, _to_float(value))


class ProgressDecoder(LineBuffer):
    """Writable that turns progress output into :class:`Progress` callbacks.

    ``callback`` is called once per completed record, after which a fresh
    record is started.
    """

    def __init__(self, callback: Callable[[Progress], None]):
        super().__init__(self._line)
        self._on_progress = callback
        self.current = Progress()

    def _line(self, line: str) -> None:
        if parse_progress(self.current, line):
            record, self.current = self.current, Progress()
            self._on_progress(record)

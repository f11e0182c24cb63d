"""Media analysis with ffprobe."""

import io
import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import FFmpegConfig, get_config
from ..errors import DecodeError, ProcessError
from ..executor.command_builder import Input, option_args
from ..executor.linebuffer import LastLines, MultiWriter
from ..executor.process_manager import ExtraFdProcess, ProcessUnit
from ..executor.scope import CancelScope
from ..metadata import Metadata

logger = logging.getLogger("ffcat")

SIDE_DATA_DISPLAY_MATRIX = "Display Matrix"


class SideData(BaseModel):
    """Stream side data. Only the fields used for rotation are mapped;
    everything else is available in ``ProbeResult.raw``."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    side_data_type: str = ""
    displaymatrix: str = ""
    rotation: int = 0  # counter clockwise


class ProbeStream(BaseModel):
    """One stream as reported by ``-show_streams``."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    index: int = 0
    codec_name: str = ""
    codec_long_name: str = ""
    codec_type: str = ""
    codec_tag_string: str = ""
    codec_tag: str = ""
    profile: str = ""
    sample_fmt: str = ""
    sample_rate: str = ""
    channels: int = 0
    channel_layout: str = ""
    bits_per_sample: int = 0
    r_frame_rate: str = ""
    avg_frame_rate: str = ""
    time_base: str = ""
    start_pts: int = 0
    start_time: str = ""
    duration_ts: int = 0
    duration: str = ""
    bit_rate: str = ""
    max_bit_rate: str = ""
    nb_frames: str = ""
    width: int = 0
    height: int = 0
    coded_width: int = 0
    coded_height: int = 0
    has_b_frames: int = 0
    sample_aspect_ratio: str = ""
    display_aspect_ratio: str = ""
    pix_fmt: str = ""
    level: int = 0
    chroma_location: str = ""
    refs: int = 0
    is_avc: str = ""
    nal_length_size: str = ""
    tags: Metadata = Field(default_factory=Metadata)
    side_data_list: list[SideData] = Field(default_factory=list)

    def rotation(self) -> int:
        """Rotation from the display matrix side data, 0 if none."""
        for side_data in self.side_data_list:
            if side_data.side_data_type == SIDE_DATA_DISPLAY_MATRIX:
                return side_data.rotation
        return 0

    def display_width(self) -> int:
        """Width as displayed, i.e. with rotation applied."""
        if self.rotation() in (-90, 90):
            return self.height
        return self.width

    def display_height(self) -> int:
        """Height as displayed, i.e. with rotation applied."""
        if self.rotation() in (-90, 90):
            return self.width
        return self.height


class ProbeFormat(BaseModel):
    """Container information as reported by ``-show_format``."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    filename: str = ""
    format_name: str = ""
    format_long_name: str = ""
    start_time: str = ""
    duration: str = ""
    size: str = ""
    bit_rate: str = ""
    probe_score: int = 0
    tags: Metadata = Field(default_factory=Metadata)


class ProbeResult(BaseModel):
    """Typed ffprobe result.

    ``raw`` holds the complete decoded JSON document so fields that are
    not mapped here are still reachable.
    """
    format: ProbeFormat = Field(default_factory=ProbeFormat)
    streams: list[ProbeStream] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_json(cls, text: str | bytes) -> "ProbeResult":
        """Decode ffprobe's JSON output.

        Raises:
            DecodeError: If the text is not a valid probe document.
        """
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"invalid ffprobe output: {exc}", raw=text) from exc
        if not isinstance(raw, dict):
            raise DecodeError("invalid ffprobe output: not a JSON object", raw=text)
        try:
            return cls(
                format=raw.get("format") or {},
                streams=raw.get("streams") or [],
                raw=raw,
            )
        except ValidationError as exc:
            raise DecodeError(f"unexpected ffprobe output: {exc}", raw=text) from exc

    def find_first_stream(self, codec_type: str) -> Optional[ProbeStream]:
        """First stream with the given codec type ("video", "audio", ...)."""
        for stream in self.streams:
            if stream.codec_type == codec_type:
                return stream
        return None

    def first_video_codec(self) -> str:
        stream = self.find_first_stream("video")
        return stream.codec_name if stream else ""

    def first_audio_codec(self) -> str:
        stream = self.find_first_stream("audio")
        return stream.codec_name if stream else ""

    @property
    def format_name(self) -> str:
        """Probed format, first one when ffprobe lists several."""
        return self.format.format_name.split(",")[0]

    @property
    def duration(self) -> float:
        """Duration in seconds, 0 when unknown."""
        try:
            return float(self.format.duration)
        except ValueError:
            return 0.0

    def __str__(self) -> str:
        return ":".join([self.format_name, *(s.codec_name for s in self.streams)])


class FFprobeCommand(ProcessUnit):
    """An ffprobe invocation returning a :class:`ProbeResult`.

    A stream input is fed to ffprobe on stdin (``pipe:0``).
    """

    def __init__(
        self,
        input: Input,
        flags: Optional[list[str]] = None,
        scope: Optional[CancelScope] = None,
        stderr: Any = None,
        stderr_buffer_lines: Optional[int] = None,
        config: Optional[FFmpegConfig] = None,
    ):
        self.input = input
        self.flags = flags or []
        self.scope = scope
        self.stderr = stderr
        self.config = config or get_config()
        self.stderr_buffer_lines = stderr_buffer_lines or self.config.stderr_buffer_lines
        self.result: Optional[ProbeResult] = None

        self._process: Optional[ExtraFdProcess] = None
        self._stdout = io.BytesIO()
        self._stderr_lines: Optional[LastLines] = None

    def args(self) -> list[str]:
        """Arguments after the program name."""
        args = [
            "-hide_banner",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
        ]
        args.extend(self.flags)
        args.extend(option_args(self.input.options))
        args.extend(self.input.flags)
        if self.input.format:
            args.extend(["-f", self.input.format])
        if isinstance(self.input.file, (str, os.PathLike)):
            args.append(os.fspath(self.input.file))
        else:
            args.append("pipe:0")
        return args

    def start(self) -> None:
        stdin = None
        if not isinstance(self.input.file, (str, os.PathLike)):
            stdin = self.input.file

        self._stderr_lines = LastLines(self.stderr_buffer_lines)
        writers = [self._stderr_lines]
        if self.stderr is not None:
            writers.append(self.stderr)

        self._process = ExtraFdProcess(
            self.config.ffprobe_path,
            *self.args(),
            stdin=stdin,
            stdout=self._stdout,
            stderr=MultiWriter(*writers),
            scope=self.scope,
        )
        logger.debug("[ffprobe] Running: %s", shlex.join(self._process.args))
        self._process.start()

    def wait(self) -> ProbeResult:
        """Wait for ffprobe and decode its output.

        A failed run takes precedence over undecodable output.

        Raises:
            ExitError: If ffprobe failed.
            DecodeError: If the output is not a valid probe document.
        """
        if self._process is None:
            raise ProcessError("ffprobe command not started")
        try:
            self._process.wait()
        except ProcessError as exc:
            self._stderr_lines.close()
            exc.stderr_tail = self._stderr_lines.render()
            raise
        self._stderr_lines.close()

        try:
            self.result = ProbeResult.from_json(self._stdout.getvalue())
        except DecodeError as exc:
            exc.stderr_tail = self._stderr_lines.render()
            raise
        return self.result

    def run(self) -> ProbeResult:
        self.start()
        return self.wait()

    def stderr_buffer(self) -> str:
        if self._stderr_lines is None:
            return ""
        return self._stderr_lines.render()


class VideoAnalyzer:
    """Analyzes media files using ffprobe."""

    def __init__(self, config: Optional[FFmpegConfig] = None):
        """Initialize the analyzer.

        Args:
            config: Binary configuration. Defaults to :func:`get_config`.
        """
        self.config = config or get_config()

    def analyze(
        self,
        source: str | Path | Any,
        format: str = "",
        scope: Optional[CancelScope] = None,
    ) -> ProbeResult:
        """Probe a file path or readable stream.

        Raises:
            FileNotFoundError: If a path is given that doesn't exist.
            ProcessError: If ffprobe fails or its output can't be decoded.
        """
        if isinstance(source, (str, os.PathLike)) and not Path(source).exists():
            raise FileNotFoundError(f"Media file not found: {source}")

        probe = FFprobeCommand(
            Input(file=source, format=format),
            scope=scope,
            config=self.config,
        )
        return probe.run()

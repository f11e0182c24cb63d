"""FFmpeg command execution modules."""

from .command_builder import (
    CommandBuilder,
    FFmpegCommand,
    Filter,
    FilterChain,
    FilterGraph,
    Input,
    Map,
    Output,
)
from .group import ProcessGroup
from .linebuffer import LastLines, LineBuffer, MultiWriter
from .loader import command_from_dict, load_command, load_commands
from .preview import PreviewGenerator, Range, Resolution
from .process_manager import CloseOnce, ExtraFdProcess, PopenUnit, ProcessUnit
from .progress import Progress, ProgressDecoder, parse_progress
from .scope import CancelScope

__all__ = [
    "CancelScope",
    "CloseOnce",
    "CommandBuilder",
    "ExtraFdProcess",
    "FFmpegCommand",
    "Filter",
    "FilterChain",
    "FilterGraph",
    "Input",
    "LastLines",
    "LineBuffer",
    "Map",
    "MultiWriter",
    "Output",
    "PopenUnit",
    "PreviewGenerator",
    "ProcessGroup",
    "ProcessUnit",
    "Progress",
    "ProgressDecoder",
    "Range",
    "Resolution",
    "command_from_dict",
    "load_command",
    "load_commands",
    "parse_progress",
]

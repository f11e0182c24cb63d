"""ffcat: run ffmpeg and ffprobe with in-process streams, progress and
process groups, and render stream previews of media files."""

from .config import FFmpegConfig, get_config
from .errors import (
    BindError,
    CopyError,
    DecodeError,
    ExitError,
    ProcessError,
    ResolutionError,
    StartError,
)
from .executor import (
    CancelScope,
    FFmpegCommand,
    Filter,
    FilterGraph,
    Input,
    Map,
    Output,
    PreviewGenerator,
    ProcessGroup,
    Progress,
)
from .metadata import Metadata
from .video import FFprobeCommand, ProbeResult, VideoAnalyzer

__version__ = "0.1.0"

__all__ = [
    "BindError",
    "CancelScope",
    "CopyError",
    "DecodeError",
    "ExitError",
    "FFmpegCommand",
    "FFmpegConfig",
    "FFprobeCommand",
    "Filter",
    "FilterGraph",
    "Input",
    "Map",
    "Metadata",
    "Output",
    "PreviewGenerator",
    "ProbeResult",
    "ProcessError",
    "ProcessGroup",
    "Progress",
    "ResolutionError",
    "StartError",
    "VideoAnalyzer",
    "get_config",
]

"""Media probing with ffprobe."""

from .analyzer import FFprobeCommand, ProbeFormat, ProbeResult, ProbeStream, VideoAnalyzer

__all__ = [
    "FFprobeCommand",
    "ProbeFormat",
    "ProbeResult",
    "ProbeStream",
    "VideoAnalyzer",
]

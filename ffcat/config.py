"""Configuration for locating and running ffmpeg/ffprobe."""

import os
from dataclasses import dataclass
from functools import lru_cache

from .binaries import resolve_binary


@dataclass(frozen=True)
class FFmpegConfig:
    """Binary locations and defaults threaded into every command."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Diagnostics
    stderr_buffer_lines: int = 100  # stderr lines kept for error messages

    @classmethod
    def from_env(cls) -> "FFmpegConfig":
        """Create configuration from environment variables.

        Paths not set in the environment are looked up on ``PATH`` (and
        well-known install directories). When nothing is found the bare
        binary name is kept so the failure surfaces at start time.

        Returns:
            FFmpegConfig instance
        """
        return cls(
            ffmpeg_path=os.getenv("FFCAT_FFMPEG") or resolve_binary("ffmpeg") or "ffmpeg",
            ffprobe_path=os.getenv("FFCAT_FFPROBE") or resolve_binary("ffprobe") or "ffprobe",
            stderr_buffer_lines=int(os.getenv("FFCAT_STDERR_LINES", "100")),
        )

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.ffmpeg_path:
            raise ValueError("Invalid ffmpeg_path: empty")

        if not self.ffprobe_path:
            raise ValueError("Invalid ffprobe_path: empty")

        if self.stderr_buffer_lines < 1:
            raise ValueError(f"Invalid stderr_buffer_lines: {self.stderr_buffer_lines}")


@lru_cache(maxsize=1)
def get_config() -> FFmpegConfig:
    """Get the process-wide default configuration.

    Built from the environment on first use and cached afterwards;
    call ``get_config.cache_clear()`` to pick up environment changes.

    Returns:
        FFmpegConfig instance
    """
    config = FFmpegConfig.from_env()
    config.validate()
    return config

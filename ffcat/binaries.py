"""Binary resolution for ffmpeg and ffprobe.

Virtual environments and service managers often run with a narrowed
``PATH`` that misses the directories package managers install ffmpeg
into (Homebrew, ``~/.local/bin``, static builds in ``/opt``).  This
module provides a single :func:`resolve_binary` helper that the
configuration layer uses to locate binaries once at start-up.

Supports **Linux** and **macOS**.
"""

import logging
import os
import pathlib
import platform
import shutil
from typing import Optional

logger = logging.getLogger("ffcat")


def _build_search_dirs() -> list[pathlib.Path]:
    """Build a list of well-known directories where ffmpeg builds are
    installed, based on the current platform."""

    home = pathlib.Path.home()
    dirs: list[pathlib.Path] = []
    system = platform.system()

    dirs.append(home / ".local" / "bin")      # user installs
    dirs.append(home / "bin")
    dirs.append(pathlib.Path("/usr/local/bin"))  # Homebrew (Intel Mac) / manual installs
    dirs.append(pathlib.Path("/opt/ffmpeg/bin"))  # static builds
    dirs.append(pathlib.Path("/snap/bin"))

    if system == "Darwin":
        # Homebrew on Apple Silicon
        dirs.append(pathlib.Path("/opt/homebrew/bin"))
        # MacPorts
        dirs.append(pathlib.Path("/opt/local/bin"))

    return dirs


_EXTRA_SEARCH_DIRS = _build_search_dirs()


def _installed(directory: pathlib.Path, name: str) -> Optional[str]:
    candidate = directory / name
    if candidate.is_file() and os.access(candidate, os.X_OK):
        return str(candidate)
    return None


def resolve_binary(*names: str) -> Optional[str]:
    """Locate an ffmpeg-family executable for :class:`~ffcat.config.FFmpegConfig`.

    ``names`` are alternatives in order of preference (``"ffprobe"``,
    ``"ffprobe7"``). Every name is looked up on ``PATH`` before any of
    the install directories is searched, so a binary the user put on
    ``PATH`` wins over a packaged one.

    Args:
        *names: Executable names to try.

    Returns:
        The executable's path, or None when no name resolves.
    """
    found = next(filter(None, (shutil.which(name) for name in names)), None)
    if found is None:
        found = next(
            filter(None, (_installed(d, name) for d in _EXTRA_SEARCH_DIRS for name in names)),
            None,
        )
    if found is not None:
        logger.debug("Resolved %s to %s", names[0] if names else "", found)
    return found

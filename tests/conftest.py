"""Pytest configuration for ffcat tests.

Sets up sys.path so that ``import ffcat`` works when running pytest from
the project root without installing, and provides fixtures for tests that
need real ffmpeg binaries or check for leaked descriptors and threads.
"""

import os
import shutil
import sys
import threading

import pytest

# Add project root to sys.path so `ffcat` is importable
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from ffcat.config import FFmpegConfig  # noqa: E402


def _open_fds() -> set[str]:
    return set(os.listdir("/proc/self/fd"))


@pytest.fixture
def ffmpeg_config() -> FFmpegConfig:
    """Configuration with real ffmpeg/ffprobe binaries, skipping when missing."""
    ffmpeg = shutil.which("ffmpeg")
    ffprobe = shutil.which("ffprobe")
    if not ffmpeg or not ffprobe:
        pytest.skip("ffmpeg not installed")
    return FFmpegConfig(ffmpeg_path=ffmpeg, ffprobe_path=ffprobe)


@pytest.fixture
def leak_check():
    """Fail the test if it leaves descriptors open or threads running."""
    if not os.path.isdir("/proc/self/fd"):
        pytest.skip("descriptor leak check needs /proc/self/fd")
    fds_before = _open_fds()
    threads_before = threading.active_count()

    yield

    assert _open_fds() == fds_before
    assert threading.active_count() == threads_before

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import List

from ..errors import ToolUnavailableError

logger = logging.getLogger(__name__)


class FFmpegError(ToolUnavailableError):
    """Raised when an ffmpeg invocation exits non-zero."""


def check_ffmpeg(ffmpeg_path: str = "ffmpeg") -> bool:
    """Check if ffmpeg is available, either on PATH or at an explicit path."""
    return shutil.which(ffmpeg_path) is not None


def run_ffmpeg(cmd: List[str]) -> None:
    """Run an ffmpeg command, raising FFmpegError on failure."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="replace").strip()
        tail = stderr.splitlines()[-1] if stderr else f"exit status {e.returncode}"
        raise FFmpegError(f"ffmpeg failed: {tail}") from e
    except OSError as e:
        raise FFmpegError(f"ffmpeg could not be started: {e}") from e

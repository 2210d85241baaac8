from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from ..errors import RequestValidationError, ToolUnavailableError
from .ffmpeg import check_ffmpeg, run_ffmpeg

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%06d.png"


class FFmpegNotFoundError(ToolUnavailableError):
    """Raised when ffmpeg is not installed."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        super().__init__(
            f"ffmpeg not found ({ffmpeg_path}). "
            "Install ffmpeg or set FFMPEG_PATH to its location.",
            details={"ffmpegPath": ffmpeg_path},
        )


def ensure_ffmpeg(ffmpeg_path: str = "ffmpeg") -> str:
    if not check_ffmpeg(ffmpeg_path):
        raise FFmpegNotFoundError(ffmpeg_path)
    return ffmpeg_path


def assemble_video(
    frames_dir: Path,
    output_path: Path,
    fps: int = 16,
    ffmpeg_path: str = "ffmpeg",
    crf: int = 23,
) -> Path:
    """Assemble frame_NNNNNN.png files into an MP4.

    Raises:
        FFmpegNotFoundError: If ffmpeg is not installed
        RequestValidationError: If no frames are found in frames_dir
    """
    ensure_ffmpeg(ffmpeg_path)

    if not any(frames_dir.glob("frame_*.png")):
        raise RequestValidationError(f"No frames found in {frames_dir}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        ffmpeg_path,
        "-y",
        "-framerate", str(fps),
        "-i", str(frames_dir / FRAME_PATTERN),
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-crf", str(crf),
        str(output_path),
    ]
    run_ffmpeg(cmd)
    return output_path


def _concat_line(clip: Path) -> str:
    escaped = str(clip.resolve()).replace("'", "'\\''")
    return f"file '{escaped}'"


def write_concat_list(list_path: Path, clips: Sequence[Path]) -> Path:
    list_path.parent.mkdir(parents=True, exist_ok=True)
    list_path.write_text("\n".join(_concat_line(c) for c in clips) + "\n", encoding="utf-8")
    return list_path


def concat_clips(
    clips: Sequence[Path],
    output_path: Path,
    fps: int = 16,
    ffmpeg_path: str = "ffmpeg",
) -> Path:
    """Join clips end to end into one H.264 MP4, in the given order."""
    ensure_ffmpeg(ffmpeg_path)
    if not clips:
        raise RequestValidationError("No clips to concatenate")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    list_path = write_concat_list(output_path.with_suffix(".concat.txt"), clips)
    cmd = [
        ffmpeg_path,
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-r", str(fps),
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        str(output_path),
    ]
    try:
        run_ffmpeg(cmd)
    finally:
        list_path.unlink(missing_ok=True)
    logger.info(f"Stitched {len(clips)} clips into {output_path}")
    return output_path

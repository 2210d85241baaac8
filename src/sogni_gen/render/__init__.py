from .ffmpeg import FFmpegError, check_ffmpeg, run_ffmpeg
from .video import FFmpegNotFoundError, assemble_video, concat_clips, ensure_ffmpeg

__all__ = [
    "FFmpegError",
    "FFmpegNotFoundError",
    "assemble_video",
    "check_ffmpeg",
    "concat_clips",
    "ensure_ffmpeg",
    "run_ffmpeg",
]

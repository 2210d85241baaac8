from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from sogni_gen.errors import RequestValidationError
from sogni_gen.render.ffmpeg import FFmpegError, check_ffmpeg, run_ffmpeg
from sogni_gen.render.video import (
    FFmpegNotFoundError,
    assemble_video,
    concat_clips,
    write_concat_list,
)


class TestCheckFfmpeg:
    def test_check_ffmpeg_returns_bool(self):
        assert isinstance(check_ffmpeg(), bool)

    def test_explicit_missing_path(self, tmp_path: Path):
        assert check_ffmpeg(str(tmp_path / "no-ffmpeg")) is False


class TestRunFfmpeg:
    def test_failure_raises_tool_error(self):
        err = subprocess.CalledProcessError(1, ["ffmpeg"], stderr=b"line one\nInvalid data found")
        with patch("sogni_gen.render.ffmpeg.subprocess.run", side_effect=err):
            with pytest.raises(FFmpegError) as exc_info:
                run_ffmpeg(["ffmpeg", "-i", "x"])
        assert "Invalid data found" in exc_info.value.message
        assert exc_info.value.code == "TOOL_UNAVAILABLE"


class TestAssembleVideo:
    def test_missing_ffmpeg_raises_helpful_error(self, tmp_path: Path):
        frames_dir = tmp_path / "frames"
        frames_dir.mkdir()
        (frames_dir / "frame_000000.png").write_bytes(b"fake")

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=False):
            with pytest.raises(FFmpegNotFoundError) as exc_info:
                assemble_video(frames_dir, tmp_path / "out.mp4")
        assert "ffmpeg not found" in str(exc_info.value)
        assert "FFMPEG_PATH" in str(exc_info.value)

    def test_empty_frames_directory_raises_error(self, tmp_path: Path):
        frames_dir = tmp_path / "frames"
        frames_dir.mkdir()

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            with pytest.raises(RequestValidationError) as exc_info:
                assemble_video(frames_dir, tmp_path / "out.mp4")
        assert "No frames found" in str(exc_info.value)

    def test_frame_rate_passed_to_ffmpeg(self, tmp_path: Path):
        frames_dir = tmp_path / "frames"
        frames_dir.mkdir()
        (frames_dir / "frame_000000.png").write_bytes(b"fake")

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            with patch("sogni_gen.render.video.run_ffmpeg") as mock_run:
                assemble_video(frames_dir, tmp_path / "nested" / "out.mp4", fps=30, ffmpeg_path="/opt/ffmpeg")
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "/opt/ffmpeg"
        assert cmd[cmd.index("-framerate") + 1] == "30"
        assert (tmp_path / "nested").exists()


class TestConcatClips:
    def test_concat_list_quotes_paths(self, tmp_path: Path):
        clip = tmp_path / "it's.mp4"
        list_path = write_concat_list(tmp_path / "list.txt", [clip])
        line = list_path.read_text(encoding="utf-8").strip()
        assert line.startswith("file '")
        assert "it'\\''s.mp4" in line

    def test_command_and_cleanup(self, tmp_path: Path):
        clips = [tmp_path / "segment-1.mp4", tmp_path / "segment-2.mp4"]
        out = tmp_path / "loop.mp4"
        seen_lists: list[str] = []

        def fake_run(cmd):
            list_path = Path(cmd[cmd.index("-i") + 1])
            seen_lists.append(list_path.read_text(encoding="utf-8"))

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            with patch("sogni_gen.render.video.run_ffmpeg", side_effect=fake_run) as mock_run:
                concat_clips(clips, out, fps=16)

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-r") + 1] == "16"
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
        assert cmd[-1] == str(out)
        assert seen_lists[0].index("segment-1") < seen_lists[0].index("segment-2")
        assert not out.with_suffix(".concat.txt").exists()

    def test_missing_ffmpeg(self, tmp_path: Path):
        with patch("sogni_gen.render.video.check_ffmpeg", return_value=False):
            with pytest.raises(FFmpegNotFoundError) as exc_info:
                concat_clips([tmp_path / "a.mp4"], tmp_path / "out.mp4")
        assert exc_info.value.code == "TOOL_UNAVAILABLE"

    def test_no_clips(self, tmp_path: Path):
        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            with pytest.raises(RequestValidationError):
                concat_clips([], tmp_path / "out.mp4")


@pytest.mark.skipif(not check_ffmpeg(), reason="ffmpeg not installed")
class TestIntegrationWithRealFfmpeg:
    def test_assemble_and_concat(self, tmp_path: Path):
        from PIL import Image

        clips = []
        for n in range(2):
            frames_dir = tmp_path / f"frames{n}"
            frames_dir.mkdir()
            for i in range(8):
                Image.new("RGB", (64, 64), color=(i * 30, n * 100, 100)).save(frames_dir / f"frame_{i:06d}.png")
            clips.append(assemble_video(frames_dir, tmp_path / f"clip{n}.mp4", fps=8))

        out = concat_clips(clips, tmp_path / "joined.mp4", fps=8)
        assert out.exists()
        assert out.stat().st_size > 0

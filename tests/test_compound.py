from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import ScriptedClient
from sogni_gen.client.events import JobFailed, UnitCompleted
from sogni_gen.compiler import RequestCompiler
from sogni_gen.compound import (
    AngleOutput,
    CompoundWorkflowEngine,
    resolve_angle_output,
    resolve_video_output,
)
from sogni_gen.config import GenConfig
from sogni_gen.errors import JobFailedError, ToolUnavailableError
from sogni_gen.options import GenOptions
from sogni_gen.orchestrator import JobOrchestrator


class FakeDownloader:
    def __init__(self):
        self.calls: list[tuple[str, Path]] = []

    async def __call__(self, url: str, dest: Path) -> Path:
        self.calls.append((url, dest))
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(url.encode())
        return dest


def _engine(client: ScriptedClient, concatenator=None):
    compiler = RequestCompiler(GenConfig())
    downloader = FakeDownloader()
    engine = CompoundWorkflowEngine(
        compiler,
        JobOrchestrator(client),
        downloader=downloader,
        concatenator=concatenator or MagicMock(),
        ffmpeg_path="ffmpeg",
    )
    return compiler, engine, downloader


class TestOutputPaths:
    def test_file_pattern(self, tmp_path: Path):
        out = resolve_angle_output(str(tmp_path / "shots" / "hero.png"), "jpg")
        assert out == AngleOutput(tmp_path / "shots", "hero", "png")
        assert out.path_for("front-right", 0, 1).name == "hero-front-right.png"
        assert out.path_for("front", 1, 2).name == "hero-front-2.png"

    def test_directory(self, tmp_path: Path):
        out = resolve_angle_output(str(tmp_path / "shots"), None)
        assert out.path_for("back", 0, 1) == tmp_path / "shots" / "back.jpg"

    def test_mp4_output_keeps_image_format(self, tmp_path: Path):
        out = resolve_angle_output(str(tmp_path / "loop.mp4"), "png")
        assert out.ext == "png"
        assert out.prefix == "loop"

    def test_video_output_precedence(self, tmp_path: Path):
        angle_out = AngleOutput(tmp_path, "hero", "jpg")
        assert resolve_video_output(str(tmp_path / "v"), None, angle_out) == tmp_path / "v.mp4"
        assert resolve_video_output(None, str(tmp_path / "x.mp4"), angle_out) == tmp_path / "x.mp4"
        assert resolve_video_output(None, None, angle_out) == tmp_path / "hero.mp4"
        assert resolve_video_output(None, None, AngleOutput(tmp_path, "", "jpg")) == tmp_path / "angles-360.mp4"


class TestMultiAngle:
    @pytest.mark.asyncio
    async def test_single_angle_downloads(self, make_image, tmp_path: Path):
        client = ScriptedClient(lambda req, cid: [UnitCompleted(cid, 0, f"https://cdn/{req.label}.jpg", 5)])
        compiler, engine, downloader = _engine(client)
        job = compiler.compile(
            GenOptions(
                prompt="portrait",
                multi_angle=True,
                azimuth="left",
                context_images=(str(make_image()),),
                output=str(tmp_path / "out" / "hero.jpg"),
            )
        )
        result = await engine.run(job)
        assert [a.angle.azimuth for a in result.angles] == ["left"]
        assert downloader.calls == [("https://cdn/left.jpg", tmp_path / "out" / "hero-left.jpg")]
        assert result.video_path is None

    @pytest.mark.asyncio
    async def test_angle_failure_aborts(self, make_image):
        def script(req, cid):
            if req.label == "right":
                return [JobFailed(cid, "filtered")]
            return [UnitCompleted(cid, 0, f"https://cdn/{req.label}.jpg")]

        client = ScriptedClient(script)
        compiler, engine, _ = _engine(client)
        job = compiler.compile(GenOptions(prompt="p", angles_360=True, context_images=(str(make_image()),)))
        with pytest.raises(JobFailedError):
            await engine.run(job)
        assert [r.label for r in client.submitted] == ["front", "front-right", "right"]


class TestStitchedVideo:
    def _job(self, compiler: RequestCompiler, make_image, tmp_path: Path, **kwargs):
        return compiler.compile(
            GenOptions(
                prompt="p",
                angles_360=True,
                angles_360_video=True,
                context_images=(str(make_image()),),
                output=str(tmp_path / "frames" / "hero.jpg"),
                **kwargs,
            )
        )

    @pytest.mark.asyncio
    async def test_segments_run_in_order_and_wrap(self, make_image, tmp_path: Path):
        def script(req, cid):
            ext = "mp4" if req.is_video else "jpg"
            return [UnitCompleted(cid, 0, f"https://cdn/{cid}.{ext}")]

        client = ScriptedClient(script)
        concat = MagicMock()
        compiler, engine, _ = _engine(client, concat)
        job = self._job(compiler, make_image, tmp_path)

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            result = await engine.run(job)

        segments = [r for r in client.submitted if r.is_video]
        assert len(segments) == 8
        frames_dir = tmp_path / "frames"
        starts = [Path(s.references[0].locator).name for s in segments]
        ends = [Path(s.references[1].locator).name for s in segments]
        assert starts[0] == "hero-front.jpg"
        assert ends[-1] == "hero-front.jpg"
        assert starts[-1] == "hero-front-left.jpg"
        concat.assert_called_once()
        clips, video_path, fps, _ = concat.call_args[0]
        assert [c.name for c in clips] == [f"segment-{i}.mp4" for i in range(1, 9)]
        assert video_path == frames_dir / "hero.mp4"
        assert fps == 16
        assert result.video_path == frames_dir / "hero.mp4"
        assert result.segments == clips
        assert result.video_model == job.stitch.video_model

    @pytest.mark.asyncio
    async def test_failed_segment_skips_concat(self, make_image, tmp_path: Path):
        segment_calls = []

        def script(req, cid):
            if req.is_video:
                segment_calls.append(cid)
                if len(segment_calls) == 2:
                    return [JobFailed(cid, "segment exploded")]
                return [UnitCompleted(cid, 0, f"https://cdn/{cid}.mp4")]
            return [UnitCompleted(cid, 0, f"https://cdn/{cid}.jpg")]

        client = ScriptedClient(script)
        concat = MagicMock()
        compiler, engine, _ = _engine(client, concat)
        job = self._job(compiler, make_image, tmp_path)

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=True):
            with pytest.raises(JobFailedError) as exc_info:
                await engine.run(job)
        assert "segment exploded" in exc_info.value.message
        assert len(segment_calls) == 2
        concat.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_fails_before_generation(self, make_image, tmp_path: Path):
        client = ScriptedClient(lambda req, cid: [UnitCompleted(cid, 0, "x")])
        compiler, engine, _ = _engine(client)
        job = self._job(compiler, make_image, tmp_path)

        with patch("sogni_gen.render.video.check_ffmpeg", return_value=False):
            with pytest.raises(ToolUnavailableError) as exc_info:
                await engine.run(job)
        assert exc_info.value.code == "TOOL_UNAVAILABLE"
        assert client.submitted == []

from __future__ import annotations

import asyncio
import logging
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence

from .angles import AngleSpec
from .compiler import CompiledJob, JobMode, RequestCompiler, StitchPlan
from .errors import JobFailedError, RequestValidationError
from .media import download_to_file
from .orchestrator import JobOrchestrator
from .render.video import concat_clips, ensure_ffmpeg
from .types import GenerationRequest, JobOutcome

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_PREFIX = "angles-360"

Downloader = Callable[[str, Path], Awaitable[Path]]
Concatenator = Callable[[Sequence[Path], Path, int, str], Path]


@dataclass(frozen=True)
class AngleOutput:
    """Where the images of a multi-angle set are written."""

    directory: Path
    prefix: str
    ext: str

    def path_for(self, azimuth: str, index: int, total: int) -> Path:
        safe_azimuth = re.sub(r"[^a-z0-9-]", "-", azimuth, flags=re.IGNORECASE)
        suffix = f"-{index + 1}" if total > 1 else ""
        prefix = f"{self.prefix}-" if self.prefix else ""
        return self.directory / f"{prefix}{safe_azimuth}{suffix}.{self.ext}"


def resolve_angle_output(output: Optional[str], output_format: Optional[str]) -> Optional[AngleOutput]:
    """Map ``-o`` to an angle output location.

    A path with an extension names a file pattern (``dir/stem-<azimuth>.ext``);
    a path without one names a directory.
    """
    if not output:
        return None
    desired_ext = (output_format or "jpg").lstrip(".")
    path = Path(output).expanduser()
    if not path.suffix:
        return AngleOutput(path, "", desired_ext)
    ext = path.suffix.lstrip(".").lower()
    if ext == "mp4":
        ext = desired_ext
    return AngleOutput(path.parent, path.stem, ext)


def resolve_video_output(
    video_output: Optional[str],
    output: Optional[str],
    angle_output: Optional[AngleOutput],
) -> Path:
    if video_output:
        path = Path(video_output).expanduser()
    elif output and output.lower().endswith(".mp4"):
        path = Path(output).expanduser()
    elif angle_output is not None:
        path = angle_output.directory / f"{angle_output.prefix or DEFAULT_SWEEP_PREFIX}.mp4"
    else:
        path = Path.cwd() / f"{DEFAULT_SWEEP_PREFIX}.mp4"
    if path.suffix.lower() != ".mp4":
        path = path.with_name(path.name + ".mp4")
    return path


@dataclass
class AngleResult:
    angle: AngleSpec
    request: GenerationRequest
    outcomes: list[JobOutcome]
    local_paths: list[Path] = field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        return [o.url for o in self.outcomes]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "azimuth": self.angle.azimuth,
            "elevation": self.angle.elevation,
            "distance": self.angle.distance,
            "prompt": self.request.prompt,
            "urls": self.urls,
            "seeds": [o.seed for o in self.outcomes],
        }
        if self.local_paths:
            payload["localPaths"] = [str(p) for p in self.local_paths]
        return payload


@dataclass
class CompoundResult:
    job: CompiledJob
    angles: list[AngleResult]
    video_path: Optional[Path] = None
    video_model: Optional[str] = None
    segments: list[Path] = field(default_factory=list)


class CompoundWorkflowEngine:
    """Runs multi-angle sets and stitched 360 loops, one sub-job at a time.

    Any failing sub-job aborts the whole workflow. Files already downloaded
    stay on disk.
    """

    def __init__(
        self,
        compiler: RequestCompiler,
        orchestrator: JobOrchestrator,
        downloader: Downloader = download_to_file,
        concatenator: Concatenator = concat_clips,
        ffmpeg_path: Optional[str] = None,
    ):
        self.compiler = compiler
        self.orchestrator = orchestrator
        self.downloader = downloader
        self.concatenator = concatenator
        self.ffmpeg_path = ffmpeg_path or compiler.config.resolved_ffmpeg_path()

    async def run(self, job: CompiledJob) -> CompoundResult:
        if job.mode is not JobMode.MULTI_ANGLE:
            raise RequestValidationError(f"Not a compound job: {job.mode.value}")

        angle_output = resolve_angle_output(job.output, job.primary.output_format)
        if job.stitch is not None:
            return await self._run_stitched(job, job.stitch, angle_output)
        if angle_output is not None:
            angle_output.directory.mkdir(parents=True, exist_ok=True)
        return CompoundResult(job=job, angles=await self._run_angles(job, angle_output))

    async def _run_stitched(
        self,
        job: CompiledJob,
        plan: StitchPlan,
        angle_output: Optional[AngleOutput],
    ) -> CompoundResult:
        video_path = resolve_video_output(plan.video_output, job.output, angle_output)
        ensure_ffmpeg(self.ffmpeg_path)
        if angle_output is None:
            temp_dir = Path(tempfile.mkdtemp(prefix="sogni-angles-"))
            angle_output = AngleOutput(temp_dir, DEFAULT_SWEEP_PREFIX, job.primary.output_format or "jpg")
        angle_output.directory.mkdir(parents=True, exist_ok=True)

        angles = await self._run_angles(job, angle_output)
        frames = [a.local_paths[0] for a in angles if a.local_paths]
        if not frames:
            raise JobFailedError("No local frames available to assemble 360 video.")
        segments = await self._run_segments(plan, frames, [a.angle.azimuth for a in angles])
        await asyncio.to_thread(self.concatenator, segments, video_path, plan.fps, self.ffmpeg_path)
        logger.info(f"Saved 360 video: {video_path}")
        return CompoundResult(
            job=job,
            angles=angles,
            video_path=video_path,
            video_model=plan.video_model,
            segments=segments,
        )

    async def _run_angles(self, job: CompiledJob, angle_output: Optional[AngleOutput]) -> list[AngleResult]:
        results: list[AngleResult] = []
        for request, angle in zip(job.requests, job.angles):
            outcomes = await self.orchestrator.run(request, request.count, job.timeout_sec)
            result = AngleResult(angle, request, outcomes)
            if angle_output is not None:
                for i, outcome in enumerate(outcomes):
                    dest = angle_output.path_for(angle.azimuth, i, len(outcomes))
                    result.local_paths.append(await self.downloader(outcome.url, dest))
                    logger.debug(f"Saved {dest}")
            results.append(result)
        return results

    async def _run_segments(self, plan: StitchPlan, frames: list[Path], labels: list[str]) -> list[Path]:
        clip_dir = Path(tempfile.mkdtemp(prefix="sogni-angles-clips-"))
        total = len(frames)
        clips: list[Path] = []
        for i, start in enumerate(frames):
            nxt = (i + 1) % total
            label = f"{labels[i]}->{labels[nxt]}" if len(labels) == total else None
            request = self.compiler.compile_segment(plan, start, frames[nxt], i, total, label=label)
            outcomes = await self.orchestrator.run(request, 1, plan.timeout_sec)
            clip = await self.downloader(outcomes[0].url, clip_dir / f"segment-{i + 1}.mp4")
            clips.append(clip)
        return clips

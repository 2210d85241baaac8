from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
import tempfile
import uuid
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from PIL import Image, ImageDraw, ImageOps

from ..media import read_media_bytes
from ..render.video import assemble_video
from ..types import AssetRole, GenerationRequest
from .base import GenerationClient, SubmissionAck
from .events import JobFailed, Progress, UnitCompleted

if TYPE_CHECKING:
    from ..config import PlaceholderClientConfig

logger = logging.getLogger(__name__)

KIND_COLORS = {
    "image": (240, 240, 240),
    "edit": (200, 220, 255),
    "video": (220, 255, 220),
}


def _unit_seed(request: GenerationRequest, index: int) -> int:
    base = request.seed if request.seed is not None else secrets.randbits(32)
    return (base + index) % 2**32


def _tint(seed: int, base: tuple[int, int, int]) -> tuple[int, int, int]:
    digest = hashlib.sha256(str(seed).encode()).digest()
    return tuple((c + digest[i] // 4) % 256 for i, c in enumerate(base))  # type: ignore[return-value]


def _open_reference(locator: str, size: tuple[int, int]) -> Image.Image:
    with Image.open(BytesIO(read_media_bytes(locator))) as img:
        return ImageOps.fit(img.convert("RGB"), size)


class PlaceholderClient(GenerationClient):
    """Offline client that renders labelled stand-in artifacts with Pillow.

    Results are written under ``output_dir`` and reported as ``file://`` URLs
    through the same event flow a remote service would use. Video units need
    ffmpeg; without it the job fails with a job-failed event.
    """

    def __init__(
        self,
        config: "PlaceholderClientConfig | None" = None,
        ffmpeg_path: str = "ffmpeg",
    ):
        super().__init__()
        self._config = config
        self._ffmpeg_path = ffmpeg_path
        self._output_dir: Optional[Path] = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def client_id(self) -> str:
        return "placeholder"

    @property
    def latency_sec(self) -> float:
        return self._config.latency_sec if self._config else 0.0

    @property
    def output_dir(self) -> Path:
        if self._output_dir is None:
            configured = self._config.output_dir if self._config else None
            if configured is not None:
                configured.mkdir(parents=True, exist_ok=True)
                self._output_dir = configured
            else:
                self._output_dir = Path(tempfile.mkdtemp(prefix="sogni-placeholder-"))
        return self._output_dir

    async def disconnect(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await super().disconnect()

    async def submit_image_job(self, request: GenerationRequest) -> SubmissionAck:
        return self._start(request, "image")

    async def submit_edit_job(self, request: GenerationRequest) -> SubmissionAck:
        return self._start(request, "edit")

    async def submit_video_job(self, request: GenerationRequest) -> SubmissionAck:
        return self._start(request, "video")

    async def estimate_video_cost(self, request: GenerationRequest) -> dict[str, Any]:
        frames = self._frame_count(request)
        steps = request.steps or 0
        megapixel_steps = request.width * request.height * frames * steps / 1_000_000
        return {
            "client": self.client_id,
            "model": request.model,
            "frames": frames,
            "steps": steps,
            "megapixelSteps": round(megapixel_steps, 3),
            "token": 0.0,
            "usd": 0.0,
        }

    def _start(self, request: GenerationRequest, job: str) -> SubmissionAck:
        correlation_id = uuid.uuid4().hex
        task = asyncio.get_running_loop().create_task(self._run(request, job, correlation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Accepted {job} job {correlation_id} ({request.model})")
        return SubmissionAck(correlation_id)

    async def _run(self, request: GenerationRequest, job: str, correlation_id: str) -> None:
        try:
            for index in range(request.count):
                if self.latency_sec:
                    await asyncio.sleep(self.latency_sec)
                seed = _unit_seed(request, index)
                if job == "video":
                    path = await asyncio.to_thread(self._render_video, request, seed, correlation_id, index)
                else:
                    path = await asyncio.to_thread(self._render_image, request, job, seed, correlation_id, index)
                self.events.emit(Progress(correlation_id, 100.0 * (index + 1) / request.count))
                self.events.emit(UnitCompleted(correlation_id, index, path.resolve().as_uri(), seed))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Placeholder job {correlation_id} failed: {e}")
            self.events.emit(JobFailed(correlation_id, str(e)))

    def _label(self, request: GenerationRequest, job: str, seed: int) -> str:
        lines = [
            f"Job: {job}",
            f"Model: {request.model}",
            f"Size: {request.width}x{request.height}",
            f"Seed: {seed}",
        ]
        if request.label:
            lines.append(f"Label: {request.label}")
        lines.append(request.prompt[:60])
        return "\n".join(lines)

    def _render_image(
        self,
        request: GenerationRequest,
        job: str,
        seed: int,
        correlation_id: str,
        index: int,
    ) -> Path:
        size = (request.width, request.height)
        context = request.reference(AssetRole.CONTEXT_IMAGE)
        if context is not None:
            img = _open_reference(context, size)
        else:
            img = Image.new("RGB", size, _tint(seed, KIND_COLORS[job]))
        d = ImageDraw.Draw(img)
        margin = min(size) // 16
        d.rectangle([margin, margin, size[0] - margin, size[1] - margin], outline=(0, 0, 0), width=4)
        d.text((24, 24), self._label(request, job, seed), fill=(0, 0, 0))

        ext = request.output_format or "png"
        out_path = self.output_dir / f"{correlation_id}-{index}.{ext}"
        img.save(out_path, format="JPEG" if ext == "jpg" else "PNG")
        return out_path

    def _frame_count(self, request: GenerationRequest) -> int:
        if request.frames:
            return request.frames
        return max(1, round((request.fps or 16) * (request.duration or 1)))

    def _render_video(
        self,
        request: GenerationRequest,
        seed: int,
        correlation_id: str,
        index: int,
    ) -> Path:
        size = (request.width, request.height)
        start_ref = request.reference(AssetRole.START_FRAME)
        end_ref = request.reference(AssetRole.END_FRAME)
        fill = Image.new("RGB", size, _tint(seed, KIND_COLORS["video"]))
        start = _open_reference(start_ref, size) if start_ref else fill
        end = _open_reference(end_ref, size) if end_ref else fill
        frames = self._frame_count(request)
        label = self._label(request, "video", seed)

        frames_dir = self.output_dir / f"{correlation_id}-{index}-frames"
        frames_dir.mkdir(parents=True, exist_ok=True)
        for n in range(frames):
            alpha = n / (frames - 1) if frames > 1 else 0.0
            frame = Image.blend(start, end, alpha)
            ImageDraw.Draw(frame).text((24, 24), f"{label}\nFrame {n + 1}/{frames}", fill=(0, 0, 0))
            frame.save(frames_dir / f"frame_{n:06d}.png")

        out_path = self.output_dir / f"{correlation_id}-{index}.mp4"
        return assemble_video(frames_dir, out_path, fps=request.fps or 16, ffmpeg_path=self._ffmpeg_path)

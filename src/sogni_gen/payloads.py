from __future__ import annotations

from typing import Any, Optional

from .compound import CompoundResult
from .dimensions import round_half_up
from .types import AssetRole, GenerationRequest, JobOutcome

ROLE_FIELDS = {
    AssetRole.START_FRAME: "refImage",
    AssetRole.END_FRAME: "refImageEnd",
    AssetRole.AUDIO: "refAudio",
    AssetRole.DRIVING_VIDEO: "refVideo",
}


def _common(request: GenerationRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model,
        "width": request.width,
        "height": request.height,
        "tokenType": request.token_type,
    }
    if request.output_format:
        payload["outputFormat"] = request.output_format
    if request.sampler:
        payload["sampler"] = request.sampler
    if request.scheduler:
        payload["scheduler"] = request.scheduler
    if request.loras:
        payload["loras"] = [l.id for l in request.loras]
        payload["loraStrengths"] = [l.strength for l in request.loras]
    return payload


def single_payload(
    request: GenerationRequest,
    outcomes: list[JobOutcome],
    local_path: Optional[str] = None,
) -> dict[str, Any]:
    seeds = [o.seed for o in outcomes]
    payload: dict[str, Any] = {
        "success": True,
        "type": "video" if request.is_video else "image",
        "prompt": request.prompt,
        **_common(request),
        "seed": seeds[0] if seeds else request.seed,
        "seedStrategy": request.seed_strategy.value if request.seed_strategy else None,
        "seeds": seeds,
        "urls": [o.url for o in outcomes],
        "localPath": local_path,
    }
    if request.is_video:
        payload["workflow"] = request.workflow.value if request.workflow else None
        payload["fps"] = request.fps
        payload["duration"] = request.duration
        if request.frames:
            payload["frames"] = request.frames
        if request.auto_resize_assets is not None:
            payload["autoResizeVideoAssets"] = request.auto_resize_assets
        for role, key in ROLE_FIELDS.items():
            locator = request.reference(role)
            if locator:
                payload[key] = locator
    context = request.locators(AssetRole.CONTEXT_IMAGE)
    if context:
        payload["contextImages"] = context
    return payload


def multi_angle_payload(result: CompoundResult) -> dict[str, Any]:
    job = result.job
    primary = job.primary
    return {
        "success": True,
        "type": "multi-angle-360" if job.sweep else "multi-angle",
        **_common(primary),
        "count": primary.count,
        "seed": primary.seed,
        "seedStrategy": primary.seed_strategy.value if primary.seed_strategy else None,
        "videoPath": str(result.video_path) if result.video_path else None,
        "videoModel": result.video_model,
        "urls": [url for angle in result.angles for url in angle.urls],
        "angles": [a.to_payload() for a in result.angles],
    }


def cost_payload(request: GenerationRequest, estimate: dict[str, Any]) -> dict[str, Any]:
    if request.frames:
        duration: Optional[float] = max(1, round_half_up((request.frames - 1) / (request.fps or 1)))
    else:
        duration = request.duration
    return {
        "success": True,
        "type": "video-cost",
        "model": request.model,
        "width": request.width,
        "height": request.height,
        "fps": request.fps,
        "frames": request.frames,
        "duration": duration,
        "steps": request.steps,
        "tokenType": request.token_type,
        "count": request.count,
        "estimate": estimate,
    }


def render_record(payload: dict[str, Any]) -> dict[str, Any]:
    """Turn a success payload into the record kept for ``--last-*`` reuse."""
    record = {k: v for k, v in payload.items() if k != "success"}
    if "angles" in record:
        paths = [p for angle in record["angles"] for p in angle.get("localPaths", [])]
        record["localPath"] = paths[0] if paths else None
    return record

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from .types import VideoWorkflow

DEFAULT_IMAGE_MODEL = "z_image_turbo_bf16"
DEFAULT_EDIT_MODEL = "qwen_image_edit_2511_fp8_lightning"
MULTI_ANGLE_MODEL_FAMILY = "qwen_image_edit_2511"

VIDEO_WORKFLOW_DEFAULT_MODELS: dict[VideoWorkflow, str] = {
    VideoWorkflow.T2V: "wan_v2.2-14b-fp8_t2v_lightx2v",
    VideoWorkflow.I2V: "wan_v2.2-14b-fp8_i2v_lightx2v",
    VideoWorkflow.S2V: "wan_v2.2-14b-fp8_s2v_lightx2v",
    VideoWorkflow.ANIMATE_MOVE: "wan_v2.2-14b-fp8_animate-move_lightx2v",
    VideoWorkflow.ANIMATE_REPLACE: "wan_v2.2-14b-fp8_animate-replace_lightx2v",
}

# Model id prefix -> number of context images the model accepts.
CONTEXT_IMAGE_LIMITS: dict[str, int] = {
    "qwen_image_edit_2511": 3,
}

_WORKFLOW_ALIASES: dict[str, VideoWorkflow] = {
    "t2v": VideoWorkflow.T2V,
    "text-to-video": VideoWorkflow.T2V,
    "i2v": VideoWorkflow.I2V,
    "image-to-video": VideoWorkflow.I2V,
    "s2v": VideoWorkflow.S2V,
    "sound-to-video": VideoWorkflow.S2V,
    "animate-move": VideoWorkflow.ANIMATE_MOVE,
    "animate-replace": VideoWorkflow.ANIMATE_REPLACE,
    "v2v": VideoWorkflow.V2V,
    "video-to-video": VideoWorkflow.V2V,
}

# Checked in order; animate ids also contain other workflow fragments.
_MODEL_WORKFLOW_MARKERS: list[tuple[tuple[str, ...], VideoWorkflow]] = [
    (("animate-move",), VideoWorkflow.ANIMATE_MOVE),
    (("animate-replace",), VideoWorkflow.ANIMATE_REPLACE),
    (("_t2v", "-t2v"), VideoWorkflow.T2V),
    (("_i2v", "-i2v"), VideoWorkflow.I2V),
    (("_s2v", "-s2v"), VideoWorkflow.S2V),
    (("_v2v", "-v2v"), VideoWorkflow.V2V),
]


@dataclass(frozen=True)
class ModelDefaults:
    steps: Optional[int] = None
    guidance: Optional[float] = None


def workflow_names() -> str:
    return "|".join(w.value for w in VideoWorkflow)


def normalize_video_workflow(value: Optional[str]) -> Optional[VideoWorkflow]:
    if not value:
        return None
    return _WORKFLOW_ALIASES.get(value.strip().lower().replace("_", "-"))


def infer_workflow_from_model(model_id: Optional[str]) -> Optional[VideoWorkflow]:
    if not model_id:
        return None
    lowered = model_id.lower()
    for markers, workflow in _MODEL_WORKFLOW_MARKERS:
        if any(marker in lowered for marker in markers):
            return workflow
    return None


def is_lightning(model_id: str) -> bool:
    return "lightning" in model_id.lower()


def max_context_images(model_id: str, overrides: Optional[Mapping[str, int]] = None) -> int:
    if overrides and model_id in overrides:
        return overrides[model_id]
    for prefix, limit in CONTEXT_IMAGE_LIMITS.items():
        if model_id.startswith(prefix):
            return limit
    return 0


def family_defaults(model_id: str, job: str) -> ModelDefaults:
    """Fallback steps/guidance when neither the user nor the config sets them."""
    fast = is_lightning(model_id)
    if job == "edit":
        return ModelDefaults(steps=4 if fast else 20, guidance=3.5 if fast else 7.5)
    if job == "multi-angle":
        return ModelDefaults(steps=4 if fast else 20, guidance=1.0 if fast else 4.0)
    if job == "image":
        return ModelDefaults(guidance=1.0)
    return ModelDefaults()

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class GenOptions:
    """Loosely specified user intent, as produced by argument parsing.

    ``None`` means "not given"; the compiler fills in defaults from config.
    """

    prompt: Optional[str] = None
    output: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    count: Optional[int] = None
    timeout_sec: Optional[float] = None
    token_type: Optional[str] = None
    steps: Optional[int] = None
    guidance: Optional[float] = None
    output_format: Optional[str] = None
    sampler: Optional[str] = None
    scheduler: Optional[str] = None
    loras: tuple[str, ...] = ()
    lora_strengths: tuple[float, ...] = ()
    seed: Optional[int] = None
    seed_strategy: Optional[str] = None

    multi_angle: bool = False
    angles_360: bool = False
    angles_360_video: bool = False
    video_output: Optional[str] = None
    video_model: Optional[str] = None
    azimuth: Optional[str] = None
    elevation: Optional[str] = None
    distance: Optional[str] = None
    angle_strength: Optional[float] = None
    angle_description: Optional[str] = None

    video: bool = False
    workflow: Optional[str] = None
    fps: Optional[int] = None
    duration: Optional[float] = None
    frames: Optional[int] = None
    auto_resize_assets: Optional[bool] = None
    estimate_video_cost: bool = False
    strict_size: Optional[bool] = None

    ref_image: Optional[str] = None
    ref_image_end: Optional[str] = None
    ref_audio: Optional[str] = None
    ref_video: Optional[str] = None
    context_images: tuple[str, ...] = field(default_factory=tuple)
    last_image: Optional[str] = None

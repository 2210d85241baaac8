from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from . import angles as angle_tables
from .angles import AngleSpec, build_angle_prompt
from .compat import accepts_start_frame, check_workflow_roles, infer_workflow_from_roles
from .config import GenConfig
from .dimensions import DimensionResolver, round_half_up
from .errors import RequestValidationError
from .media import ensure_exists, probe_image_size
from .models import (
    DEFAULT_EDIT_MODEL,
    DEFAULT_IMAGE_MODEL,
    MULTI_ANGLE_MODEL_FAMILY,
    VIDEO_WORKFLOW_DEFAULT_MODELS,
    ModelDefaults,
    family_defaults,
    infer_workflow_from_model,
    max_context_images,
    normalize_video_workflow,
    workflow_names,
)
from .options import GenOptions
from .seeds import derive_seed, normalize_seed_strategy, seed_payload
from .types import (
    ArtifactKind,
    AssetRole,
    DimensionSpec,
    GenerationRequest,
    LoraSpec,
    ReferenceAsset,
    ReferenceSize,
    SeedStrategy,
    VideoWorkflow,
)

logger = logging.getLogger(__name__)

IMAGE_FORMATS = ("png", "jpg")
VIDEO_FORMAT = "mp4"
TOKEN_TYPES = ("spark", "sogni")
MIN_SEGMENT_FRAMES = 17
MAX_SEED = 2**32 - 1
DEFAULT_STITCH_PROMPT = "smooth camera rotation"

SizeProbe = Callable[[str], Optional[tuple[int, int]]]


class JobMode(str, Enum):
    SINGLE = "single"
    MULTI_ANGLE = "multi-angle"
    COST_ESTIMATE = "cost-estimate"


@dataclass(frozen=True)
class StitchPlan:
    """Settings shared by every interpolation segment of a 360 loop."""

    video_model: str
    prompt: str
    width: int
    height: int
    fps: int
    duration: float
    frames: Optional[int]
    steps: Optional[int]
    guidance: Optional[float]
    token_type: str
    auto_resize_assets: Optional[bool]
    seed_strategy: SeedStrategy
    base_seed: Optional[int]
    video_output: Optional[str] = None
    timeout_sec: float = 300.0


@dataclass(frozen=True)
class CompiledJob:
    mode: JobMode
    requests: tuple[GenerationRequest, ...]
    timeout_sec: float
    output: Optional[str] = None
    angles: tuple[AngleSpec, ...] = ()
    stitch: Optional[StitchPlan] = None
    sweep: bool = False

    @property
    def primary(self) -> GenerationRequest:
        return self.requests[0]


@dataclass
class _Draft:
    """Mutable working copy of the options while rules are applied."""

    prompt: str
    model: Optional[str]
    count: int
    token_type: str
    steps: Optional[int]
    guidance: Optional[float]
    output_format: Optional[str]
    sampler: Optional[str]
    scheduler: Optional[str]
    loras: list[str]
    lora_strengths: list[float]
    seed: Optional[int]
    seed_strategy: Optional[SeedStrategy]
    fps: int
    duration: float
    frames: Optional[int]
    ref_image: Optional[str]
    ref_image_end: Optional[str]
    ref_audio: Optional[str]
    ref_video: Optional[str]
    context_images: list[str]
    angle: Optional[AngleSpec] = None
    angle_strength: Optional[float] = None


class RequestCompiler:
    """Validates user options and turns them into canonical generation requests.

    Every rule raises a ``SogniGenError`` subclass; nothing partial is ever
    returned.
    """

    def __init__(self, config: Optional[GenConfig] = None, probe: SizeProbe = probe_image_size):
        self.config = config or GenConfig()
        self.probe = probe
        self.resolver = DimensionResolver(
            default_size=(self.config.default_width, self.config.default_height),
            max_dimension=self.config.video_max_dimension,
            size_limit=self.config.video_size_limit,
        )

    def compile(self, opts: GenOptions) -> CompiledJob:
        if opts.angles_360_video and not opts.angles_360:
            raise RequestValidationError("--angles-360-video requires --angles-360.")
        if not opts.angles_360_video:
            for flag, value in (("--video-model", opts.video_model), ("--video-output", opts.video_output)):
                if value:
                    raise RequestValidationError(f"{flag} requires --angles-360-video.")
        d = self._draft(opts)

        if opts.multi_angle or opts.angles_360:
            self._apply_multi_angle_rules(opts, d)

        self._check_output_format(opts, d)
        self._check_loras(opts, d)
        self._check_video_only_flags(opts, d)

        workflow = self._resolve_workflow(opts, d) if opts.video else None
        self._place_last_image(opts, d, workflow)
        model = self._resolve_model(d, workflow)

        if not d.prompt and not opts.estimate_video_cost and not opts.multi_angle and not opts.angles_360:
            raise RequestValidationError("No prompt provided. Use --help for usage.")

        references = self._references(d)
        if workflow is not None:
            check_workflow_roles(workflow, (ref.role for ref in references))
        self._check_context_capacity(opts, d, model)
        for ref in references:
            ensure_exists(ref.locator)

        size = self._resolve_size(opts, d, references)
        defaults = self._model_defaults(opts, d, model)
        steps = d.steps if d.steps is not None else defaults.steps
        guidance = d.guidance if d.guidance is not None else defaults.guidance
        timeout = self._timeout(opts, d)

        base = GenerationRequest(
            kind=ArtifactKind.VIDEO if opts.video else ArtifactKind.IMAGE,
            workflow=workflow,
            model=model,
            prompt=d.prompt,
            width=size.width,
            height=size.height,
            count=d.count,
            output_format=d.output_format,
            steps=steps,
            guidance=guidance,
            sampler=d.sampler,
            scheduler=d.scheduler,
            references=tuple(references),
            loras=tuple(LoraSpec(i, s) for i, s in zip(d.loras, d.lora_strengths)),
            token_type=d.token_type,
            fps=d.fps if opts.video else None,
            duration=(d.frames / d.fps if d.frames else d.duration) if opts.video else None,
            frames=d.frames if opts.video else None,
            auto_resize_assets=opts.auto_resize_assets if opts.video else None,
        )

        if opts.estimate_video_cost:
            if steps is None:
                raise RequestValidationError(
                    "--estimate-video-cost requires --steps (or model_defaults for this model)."
                )
            return CompiledJob(JobMode.COST_ESTIMATE, (base,), timeout, output=opts.output)

        angle_payload = None
        if d.angle is not None:
            angle_payload = d.angle.as_dict()
            if opts.angles_360:
                angle_payload["azimuth"] = "360"
        base = self._with_seed(base, d, angle_payload)

        if d.angle is None:
            return CompiledJob(JobMode.SINGLE, (base,), timeout, output=opts.output)
        return self._multi_angle_job(opts, d, d.angle, base, timeout)

    def compile_segment(
        self,
        plan: StitchPlan,
        start_frame: Path,
        end_frame: Path,
        index: int,
        total: int,
        label: Optional[str] = None,
    ) -> GenerationRequest:
        """Build the i2v interpolation request for one segment of a 360 loop."""
        if total < 1:
            raise RequestValidationError("A stitched video needs at least one segment.")
        frames = None
        if plan.frames:
            frames = max(MIN_SEGMENT_FRAMES, round_half_up(plan.frames / total))
            duration = frames / plan.fps
        else:
            duration = float(max(1, round_half_up(plan.duration / total)))

        request = GenerationRequest(
            kind=ArtifactKind.VIDEO,
            workflow=VideoWorkflow.I2V,
            model=plan.video_model,
            prompt=plan.prompt,
            width=plan.width,
            height=plan.height,
            count=1,
            output_format=VIDEO_FORMAT,
            steps=plan.steps,
            guidance=plan.guidance,
            references=(
                ReferenceAsset(AssetRole.START_FRAME, str(start_frame)),
                ReferenceAsset(AssetRole.END_FRAME, str(end_frame)),
            ),
            token_type=plan.token_type,
            fps=plan.fps,
            duration=duration,
            frames=frames,
            auto_resize_assets=plan.auto_resize_assets,
            label=label or f"segment {index + 1}/{total}",
        )
        segment_key = {"segment": label or str(index), "total": total, "baseSeed": plan.base_seed}
        seed = derive_seed(plan.seed_strategy, seed_payload(replace(request, references=()), segment_key))
        return replace(request, seed=seed, seed_strategy=plan.seed_strategy)

    # -- option normalisation -------------------------------------------------

    def _draft(self, opts: GenOptions) -> _Draft:
        cfg = self.config
        token_type = (opts.token_type or cfg.default_token_type).lower()
        if token_type not in TOKEN_TYPES:
            raise RequestValidationError('--token-type must be "spark" or "sogni".')

        seed_strategy = None
        raw_strategy = opts.seed_strategy or cfg.seed_strategy
        if raw_strategy:
            seed_strategy = normalize_seed_strategy(raw_strategy)
            if seed_strategy is None:
                raise RequestValidationError('--seed-strategy must be "random" or "prompt-hash".')

        if opts.seed is not None and not 0 <= opts.seed <= MAX_SEED:
            raise RequestValidationError(f"--seed must be between 0 and {MAX_SEED}.")
        if opts.steps is not None and opts.steps <= 0:
            raise RequestValidationError("--steps must be a positive number.")
        if opts.guidance is not None and not math.isfinite(opts.guidance):
            raise RequestValidationError("--guidance must be a number.")
        count = opts.count if opts.count is not None else cfg.default_count
        if count < 1:
            raise RequestValidationError("--count must be at least 1.")

        fps = opts.fps if opts.fps is not None else cfg.default_fps
        duration = opts.duration if opts.duration is not None else cfg.default_duration_sec
        if fps <= 0 or duration <= 0:
            raise RequestValidationError("--fps and --duration must be positive.")
        if opts.frames is not None and opts.frames <= 0:
            raise RequestValidationError("--frames must be positive.")

        return _Draft(
            prompt=opts.prompt or "",
            model=opts.model,
            count=count,
            token_type=token_type,
            steps=opts.steps,
            guidance=opts.guidance,
            output_format=opts.output_format,
            sampler=opts.sampler,
            scheduler=opts.scheduler,
            loras=list(opts.loras),
            lora_strengths=list(opts.lora_strengths),
            seed=opts.seed,
            seed_strategy=seed_strategy,
            fps=fps,
            duration=duration,
            frames=opts.frames,
            ref_image=opts.ref_image,
            ref_image_end=opts.ref_image_end,
            ref_audio=opts.ref_audio,
            ref_video=opts.ref_video,
            context_images=list(opts.context_images),
            angle_strength=opts.angle_strength,
        )

    def _apply_multi_angle_rules(self, opts: GenOptions, d: _Draft) -> None:
        if opts.video:
            raise RequestValidationError("--multi-angle is only for image editing.")
        if opts.angles_360:
            if opts.count is not None and opts.count != 1:
                raise RequestValidationError("--angles-360 requires --count 1.")
            d.count = 1
        if opts.last_image and not d.context_images:
            d.context_images.append(opts.last_image)
        if not d.context_images:
            raise RequestValidationError(
                "--multi-angle requires a reference image (--context or --last-image)."
            )
        if len(d.context_images) > 1:
            logger.warning("--multi-angle uses the first context image only.")
            d.context_images = d.context_images[:1]

        if opts.angles_360:
            if opts.azimuth:
                logger.warning("--azimuth ignored for --angles-360.")
            azimuth = angle_tables.SWEEP_ORDER[0]
        else:
            azimuth = angle_tables.normalize_azimuth(opts.azimuth or "front")
        elevation = angle_tables.normalize_elevation(opts.elevation or "eye-level")
        distance = angle_tables.normalize_distance(opts.distance or "medium")

        if d.model and MULTI_ANGLE_MODEL_FAMILY not in d.model:
            raise RequestValidationError("--multi-angle requires a Qwen Image Edit 2511 model.")
        if not d.model:
            d.model = DEFAULT_EDIT_MODEL
        d.output_format = d.output_format or "jpg"
        d.sampler = d.sampler or "euler"
        d.scheduler = d.scheduler or "simple"

        d.angle = AngleSpec(
            azimuth=azimuth,
            elevation=elevation,
            distance=distance,
            description=opts.angle_description or d.prompt,
        )

        if not d.loras and d.lora_strengths:
            if len(d.lora_strengths) > 1:
                raise RequestValidationError(
                    "--lora-strengths requires explicit --loras when using --multi-angle."
                )
            if d.angle_strength is None:
                d.angle_strength = d.lora_strengths[0]
            d.lora_strengths = []
        if d.angle_strength is None:
            d.angle_strength = angle_tables.DEFAULT_ANGLE_STRENGTH

        if angle_tables.MULTI_ANGLE_LORA not in d.loras:
            d.loras.append(angle_tables.MULTI_ANGLE_LORA)
            if d.lora_strengths:
                d.lora_strengths.append(d.angle_strength)
        if not d.lora_strengths:
            d.lora_strengths = [
                d.angle_strength if lora == angle_tables.MULTI_ANGLE_LORA else 1.0 for lora in d.loras
            ]

    def _check_output_format(self, opts: GenOptions, d: _Draft) -> None:
        if not d.output_format:
            return
        fmt = d.output_format.lower().lstrip(".")
        fmt = "jpg" if fmt == "jpeg" else fmt
        if opts.video:
            if fmt != VIDEO_FORMAT:
                raise RequestValidationError('Video output format must be "mp4".')
        elif fmt not in IMAGE_FORMATS:
            raise RequestValidationError('Image output format must be "png" or "jpg".')
        d.output_format = fmt

    def _check_loras(self, opts: GenOptions, d: _Draft) -> None:
        if d.lora_strengths and not d.loras:
            raise RequestValidationError("--lora-strength requires at least one --lora.")
        if d.loras and opts.video:
            raise RequestValidationError("--lora options are image-only.")
        if opts.video and (d.sampler or d.scheduler):
            raise RequestValidationError("--sampler/--scheduler are image-only options.")
        if d.loras and not d.lora_strengths:
            d.lora_strengths = [1.0] * len(d.loras)
        if len(d.lora_strengths) != len(d.loras):
            raise RequestValidationError(
                "--lora-strengths count must match --loras count.",
                details={"loras": len(d.loras), "loraStrengths": len(d.lora_strengths)},
            )

    def _check_video_only_flags(self, opts: GenOptions, d: _Draft) -> None:
        if opts.video:
            return
        # A stitched 360 loop is a video artifact even without --video.
        stitched = opts.angles_360_video
        if opts.auto_resize_assets is not None and not stitched:
            raise RequestValidationError("--auto-resize-assets is only valid with --video.")
        if opts.estimate_video_cost:
            raise RequestValidationError("--estimate-video-cost requires --video.")
        if opts.frames is not None and not stitched:
            raise RequestValidationError("--frames requires --video or --angles-360-video.")
        if any((d.ref_image, d.ref_image_end, d.ref_audio, d.ref_video, opts.workflow)):
            raise RequestValidationError(
                "Video-only options (--workflow/--frames/--ref/--ref-end/--ref-audio/--ref-video) "
                "require --video."
            )

    def _resolve_workflow(self, opts: GenOptions, d: _Draft) -> VideoWorkflow:
        explicit = None
        if opts.workflow:
            explicit = normalize_video_workflow(opts.workflow)
            if explicit is None:
                raise RequestValidationError(
                    f'Unknown workflow "{opts.workflow}". Use {workflow_names()}.'
                )
        from_model = infer_workflow_from_model(d.model)
        if explicit and from_model and explicit is not from_model:
            raise RequestValidationError(
                f'Workflow "{explicit.value}" does not match model "{d.model}".',
                details={"workflow": explicit.value, "modelWorkflow": from_model.value},
            )
        if explicit:
            return explicit
        if from_model:
            return from_model
        roles = [ref.role for ref in self._references(d)]
        from_roles = infer_workflow_from_roles(roles)
        if from_roles:
            return from_roles
        configured = normalize_video_workflow(self.config.default_video_workflow)
        return configured or VideoWorkflow.T2V

    def _place_last_image(self, opts: GenOptions, d: _Draft, workflow: Optional[VideoWorkflow]) -> None:
        if not opts.last_image or d.angle is not None:
            return
        if workflow is not None:
            if accepts_start_frame(workflow):
                d.ref_image = d.ref_image or opts.last_image
            else:
                logger.warning(f"--last-image ignored for {workflow.value} workflow.")
        else:
            d.context_images.append(opts.last_image)

    def _resolve_model(self, d: _Draft, workflow: Optional[VideoWorkflow]) -> str:
        cfg = self.config
        if d.model:
            return d.model
        if workflow is not None:
            model = cfg.video_models.get(workflow.value) or VIDEO_WORKFLOW_DEFAULT_MODELS.get(workflow)
            if model is None:
                raise RequestValidationError(
                    f"No default model for workflow {workflow.value}; pass --model "
                    "or set video_models in the config."
                )
            return model
        if d.context_images:
            return cfg.default_edit_model or DEFAULT_EDIT_MODEL
        return cfg.default_image_model or DEFAULT_IMAGE_MODEL

    def _references(self, d: _Draft) -> list[ReferenceAsset]:
        refs: list[ReferenceAsset] = []
        for role, locator in (
            (AssetRole.START_FRAME, d.ref_image),
            (AssetRole.END_FRAME, d.ref_image_end),
            (AssetRole.AUDIO, d.ref_audio),
            (AssetRole.DRIVING_VIDEO, d.ref_video),
        ):
            if locator:
                refs.append(ReferenceAsset(role, locator))
        refs.extend(ReferenceAsset(AssetRole.CONTEXT_IMAGE, c) for c in d.context_images)
        return refs

    def _check_context_capacity(self, opts: GenOptions, d: _Draft, model: str) -> None:
        if opts.video or not d.context_images:
            return
        limit = max_context_images(model, self.config.context_image_limits)
        supplied = len(d.context_images)
        if limit == 0:
            raise RequestValidationError(
                f"Model {model} does not support context images.",
                hint=f"Use --model {DEFAULT_EDIT_MODEL}",
                details={"model": model, "limit": 0, "supplied": supplied},
            )
        if supplied > limit:
            raise RequestValidationError(
                f"Model {model} supports max {limit} context images, got {supplied}",
                details={"model": model, "limit": limit, "supplied": supplied},
            )

    # -- derived values -------------------------------------------------------

    def _strict(self, opts: GenOptions) -> bool:
        return opts.strict_size if opts.strict_size is not None else self.config.strict_video_size

    def _requested_size(self, opts: GenOptions) -> DimensionSpec:
        explicit = opts.width is not None or opts.height is not None
        return DimensionSpec(
            width=opts.width if opts.width is not None else self.config.default_width,
            height=opts.height if opts.height is not None else self.config.default_height,
            explicit=explicit,
        )

    def _resolve_size(
        self,
        opts: GenOptions,
        d: _Draft,
        references: list[ReferenceAsset],
    ) -> DimensionSpec:
        requested = self._requested_size(opts)
        if not opts.video:
            return self.resolver.resolve(requested)

        strict = self._strict(opts)
        ref_sizes: list[ReferenceSize] = []
        if not requested.explicit or strict:
            for ref in references:
                if ref.role not in (AssetRole.START_FRAME, AssetRole.END_FRAME):
                    continue
                probed = self.probe(ref.locator)
                if probed is not None:
                    ref_sizes.append(ReferenceSize(probed[0], probed[1], ref.role))
        return self.resolver.resolve(
            requested,
            ref_sizes,
            constraint_multiple=self.config.video_size_multiple,
            strict=strict,
        )

    def _model_defaults(self, opts: GenOptions, d: _Draft, model: str) -> ModelDefaults:
        if opts.video:
            job = "video"
        elif d.angle is not None:
            job = "multi-angle"
        elif d.context_images:
            job = "edit"
        else:
            job = "image"
        fallback = family_defaults(model, job)
        configured = self.config.model_defaults_for(model)
        if configured is None:
            return fallback
        return ModelDefaults(
            steps=configured.steps if configured.steps is not None else fallback.steps,
            guidance=configured.guidance if configured.guidance is not None else fallback.guidance,
        )

    def _timeout(self, opts: GenOptions, d: _Draft) -> float:
        if opts.timeout_sec is not None:
            if opts.timeout_sec <= 0:
                raise RequestValidationError("--timeout must be positive.")
            return opts.timeout_sec
        if opts.video:
            return self.config.default_video_timeout_sec
        if d.context_images:
            return self.config.default_edit_timeout_sec
        return self.config.default_image_timeout_sec

    def _with_seed(
        self,
        request: GenerationRequest,
        d: _Draft,
        angle: Optional[dict[str, str]],
    ) -> GenerationRequest:
        if d.seed is not None:
            return replace(request, seed=d.seed, seed_strategy=None)
        strategy = d.seed_strategy or SeedStrategy.PROMPT_HASH
        seed = derive_seed(strategy, seed_payload(request, angle))
        logger.info(f"Using {strategy.value} seed: {seed}")
        return replace(request, seed=seed, seed_strategy=strategy)

    def _multi_angle_job(
        self,
        opts: GenOptions,
        d: _Draft,
        angle: AngleSpec,
        base: GenerationRequest,
        timeout: float,
    ) -> CompiledJob:
        azimuths = angle_tables.SWEEP_ORDER if opts.angles_360 else (angle.azimuth,)
        specs: list[AngleSpec] = []
        requests: list[GenerationRequest] = []
        for azimuth in azimuths:
            spec = replace(angle, azimuth=azimuth)
            prompt = build_angle_prompt(spec, self.config.angle_prompt_template)
            specs.append(spec)
            requests.append(replace(base, prompt=prompt, label=azimuth))

        stitch = None
        if opts.angles_360_video:
            stitch = self._stitch_plan(opts, d, base)

        return CompiledJob(
            JobMode.MULTI_ANGLE,
            tuple(requests),
            timeout,
            output=opts.output,
            angles=tuple(specs),
            stitch=stitch,
            sweep=opts.angles_360,
        )

    def _stitch_plan(self, opts: GenOptions, d: _Draft, base: GenerationRequest) -> StitchPlan:
        cfg = self.config
        video_model = (
            opts.video_model
            or cfg.video_models.get(VideoWorkflow.I2V.value)
            or VIDEO_WORKFLOW_DEFAULT_MODELS[VideoWorkflow.I2V]
        )
        model_workflow = infer_workflow_from_model(video_model)
        if model_workflow is not None and model_workflow is not VideoWorkflow.I2V:
            raise RequestValidationError(
                f'--video-model "{video_model}" is not an image-to-video model.'
            )
        size = self.resolver.resolve(
            DimensionSpec(base.width, base.height, explicit=True),
            constraint_multiple=cfg.video_size_multiple,
            strict=self._strict(opts),
        )
        defaults = cfg.model_defaults_for(video_model)
        steps = opts.steps if opts.steps is not None else (defaults.steps if defaults else None)
        guidance = opts.guidance if opts.guidance is not None else (defaults.guidance if defaults else None)
        return StitchPlan(
            video_model=video_model,
            prompt=(opts.angle_description or d.prompt or DEFAULT_STITCH_PROMPT),
            width=size.width,
            height=size.height,
            fps=d.fps,
            duration=d.duration,
            frames=d.frames,
            steps=steps,
            guidance=guidance,
            token_type=d.token_type,
            auto_resize_assets=opts.auto_resize_assets,
            seed_strategy=base.seed_strategy or SeedStrategy.PROMPT_HASH,
            base_seed=base.seed,
            video_output=opts.video_output,
            timeout_sec=cfg.default_video_timeout_sec,
        )

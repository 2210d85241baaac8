from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .client.base import GenerationClient
from .client.registry import ClientRegistry
from .compiler import CompiledJob, JobMode, RequestCompiler
from .compound import CompoundWorkflowEngine
from .config import load_effective_config
from .errors import RequestValidationError, SogniGenError
from .media import download_to_file
from .options import GenOptions
from .orchestrator import JobOrchestrator
from .payloads import cost_payload, multi_angle_payload, render_record, single_payload
from .state import LastRenderStore, apply_last_render

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def _setup_logging(quiet: bool, verbose: bool) -> None:
    level = logging.WARNING if quiet else logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
        force=True,
    )


def _split_csv(values: Optional[list[str]]) -> tuple[str, ...]:
    return tuple(v.strip() for raw in values or [] for v in raw.split(",") if v.strip())


def _split_floats(values: Optional[list[str]], flag: str) -> tuple[float, ...]:
    parsed: list[float] = []
    for value in _split_csv(values):
        try:
            parsed.append(float(value))
        except ValueError as e:
            raise RequestValidationError(f"{flag} expects numbers, got '{value}'.") from e
    return tuple(parsed)


def _report_error(e: SogniGenError, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(e.to_payload()))
        return
    typer.echo(f"Error: {e.message}", err=True)
    if e.hint:
        typer.echo(f"Hint: {e.hint}", err=True)


def _print_result(payload: dict[str, Any], json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(payload))
        return
    if payload["type"] == "video-cost":
        typer.echo(f"Estimated cost: {json.dumps(payload['estimate'])}")
        return
    if "angles" in payload:
        if payload.get("videoPath"):
            typer.echo(f"video: {payload['videoPath']}")
        for angle in payload["angles"]:
            urls = angle["urls"]
            for i, url in enumerate(urls):
                suffix = f"#{i + 1}" if len(urls) > 1 else ""
                typer.echo(f"{angle['azimuth']}{suffix}: {url}")
        return
    for url in payload["urls"]:
        typer.echo(url)


async def _execute(job: CompiledJob, compiler: RequestCompiler, client: GenerationClient) -> dict[str, Any]:
    async with client:
        orchestrator = JobOrchestrator(client)
        if job.mode is JobMode.COST_ESTIMATE:
            estimate = await client.estimate_video_cost(job.primary)
            return cost_payload(job.primary, estimate)

        if job.mode is JobMode.MULTI_ANGLE:
            engine = CompoundWorkflowEngine(compiler, orchestrator)
            return multi_angle_payload(await engine.run(job))

        outcomes = await orchestrator.run(job.primary, job.primary.count, job.timeout_sec)
        local_path = None
        if job.output:
            dest = Path(job.output).expanduser()
            await download_to_file(outcomes[0].url, dest)
            logger.info(f"Saved to {dest}")
            local_path = str(dest)
        return single_payload(job.primary, outcomes, local_path)


@app.command()
def generate(
    prompt: Optional[str] = typer.Argument(None, help="What to generate"),
    output: Optional[str] = typer.Option(None, "-o", "--output", help="Save result to this path"),
    model: Optional[str] = typer.Option(None, "-m", "--model"),
    width: Optional[int] = typer.Option(None, "-w", "--width"),
    height: Optional[int] = typer.Option(None, "-h", "--height"),
    count: Optional[int] = typer.Option(None, "-n", "--count"),
    seed: Optional[int] = typer.Option(None, "-s", "--seed"),
    last_seed: bool = typer.Option(False, "--last-seed", help="Reuse seed from previous render"),
    seed_strategy: Optional[str] = typer.Option(None, "--seed-strategy", help="random|prompt-hash"),
    timeout: Optional[float] = typer.Option(None, "-t", "--timeout", help="Timeout in seconds"),
    steps: Optional[int] = typer.Option(None, "--steps"),
    guidance: Optional[float] = typer.Option(None, "--guidance"),
    token_type: Optional[str] = typer.Option(None, "--token-type", help="spark|sogni"),
    output_format: Optional[str] = typer.Option(None, "--output-format", help="png|jpg"),
    sampler: Optional[str] = typer.Option(None, "--sampler"),
    scheduler: Optional[str] = typer.Option(None, "--scheduler"),
    lora: Optional[list[str]] = typer.Option(None, "--lora", "--loras", help="LoRA id (repeatable or comma-separated)"),
    lora_strength: Optional[list[str]] = typer.Option(None, "--lora-strength", "--lora-strengths"),
    context: Optional[list[str]] = typer.Option(None, "-c", "--context", help="Context image for editing"),
    last_image: bool = typer.Option(False, "--last-image", help="Use the last generated image as reference"),
    multi_angle: bool = typer.Option(False, "--multi-angle"),
    angles_360: bool = typer.Option(False, "--angles-360", help="Generate all 8 azimuths"),
    angles_360_video: bool = typer.Option(False, "--angles-360-video", help="Stitch the 360 set into a looping mp4"),
    video_output: Optional[str] = typer.Option(None, "--video-output", help="Path for the stitched 360 video"),
    video_model: Optional[str] = typer.Option(None, "--video-model", help="i2v model for the 360 video"),
    azimuth: Optional[str] = typer.Option(None, "--azimuth"),
    elevation: Optional[str] = typer.Option(None, "--elevation"),
    distance: Optional[str] = typer.Option(None, "--distance"),
    angle_strength: Optional[float] = typer.Option(None, "--angle-strength"),
    angle_description: Optional[str] = typer.Option(None, "--angle-description"),
    video: bool = typer.Option(False, "-v", "--video", help="Generate video instead of image"),
    workflow: Optional[str] = typer.Option(None, "--workflow", help="t2v|i2v|s2v|animate-move|animate-replace|v2v"),
    fps: Optional[int] = typer.Option(None, "--fps"),
    duration: Optional[float] = typer.Option(None, "--duration"),
    frames: Optional[int] = typer.Option(None, "--frames"),
    auto_resize_assets: Optional[bool] = typer.Option(None, "--auto-resize-assets/--no-auto-resize-assets"),
    estimate_video_cost: bool = typer.Option(False, "--estimate-video-cost"),
    strict_size: Optional[bool] = typer.Option(None, "--strict-size/--no-strict-size"),
    ref: Optional[str] = typer.Option(None, "--ref", "--reference", help="Start frame"),
    ref_end: Optional[str] = typer.Option(None, "--ref-end", "--end", help="End frame"),
    ref_audio: Optional[str] = typer.Option(None, "--ref-audio", "--audio"),
    ref_video: Optional[str] = typer.Option(None, "--ref-video"),
    client_name: Optional[str] = typer.Option(None, "--client", help="Override default client"),
    config_path: Optional[Path] = typer.Option(None, "--config", dir_okay=False),
    json_output: bool = typer.Option(False, "--json", help="Print one JSON document"),
    quiet: bool = typer.Option(False, "-q", "--quiet"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Generate images or videos."""
    _setup_logging(quiet, verbose)
    store = LastRenderStore()
    try:
        config = load_effective_config(config_path)
        opts = GenOptions(
            prompt=prompt,
            output=output,
            model=model,
            width=width,
            height=height,
            count=count,
            timeout_sec=timeout,
            token_type=token_type,
            steps=steps,
            guidance=guidance,
            output_format=output_format,
            sampler=sampler,
            scheduler=scheduler,
            loras=_split_csv(lora),
            lora_strengths=_split_floats(lora_strength, "--lora-strength"),
            seed=seed,
            seed_strategy=seed_strategy,
            multi_angle=multi_angle,
            angles_360=angles_360,
            angles_360_video=angles_360_video,
            video_output=video_output,
            video_model=video_model,
            azimuth=azimuth,
            elevation=elevation,
            distance=distance,
            angle_strength=angle_strength,
            angle_description=angle_description,
            video=video,
            workflow=workflow,
            fps=fps,
            duration=duration,
            frames=frames,
            auto_resize_assets=auto_resize_assets,
            estimate_video_cost=estimate_video_cost,
            strict_size=strict_size,
            ref_image=ref,
            ref_image_end=ref_end,
            ref_audio=ref_audio,
            ref_video=ref_video,
            context_images=tuple(context or ()),
        )
        opts = apply_last_render(opts, store, use_last_seed=last_seed, use_last_image=last_image)

        compiler = RequestCompiler(config)
        job = compiler.compile(opts)
        registry = ClientRegistry(config)
        client = registry.get_client(client_name) if client_name else registry.get_default_client()
        payload = asyncio.run(_execute(job, compiler, client))
    except SogniGenError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1) from e

    if payload["type"] != "video-cost":
        store.write(render_record(payload))
    _print_result(payload, json_output)


@app.command()
def last():
    """Show the record of the last successful render."""
    record = LastRenderStore().read()
    if record is None:
        typer.echo("No previous render found.", err=True)
        raise typer.Exit(code=0)
    console.print_json(record.model_dump_json(by_alias=True))


if __name__ == "__main__":
    app()

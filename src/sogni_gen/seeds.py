from __future__ import annotations

import hashlib
import json
import secrets
from typing import Any, Mapping, Optional

from .types import GenerationRequest, SeedStrategy

SEED_BITS = 32


def stable_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def normalize_seed_strategy(value: Optional[str]) -> Optional[SeedStrategy]:
    if not value:
        return None
    normalized = value.strip().lower().replace("_", "-")
    for strategy in SeedStrategy:
        if strategy.value == normalized:
            return strategy
    return None


def seed_payload(
    request: GenerationRequest,
    angle: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Collect every request field that changes the generated output.

    The seed itself and the unit count are left out so a re-run with the
    same intent hashes to the same value.
    """
    if request.workflow is not None:
        workflow = request.workflow.value
    else:
        workflow = "edit" if request.is_edit else "image"
    return {
        "prompt": request.prompt,
        "model": request.model,
        "workflow": workflow,
        "width": request.width,
        "height": request.height,
        "outputFormat": request.output_format or "",
        "steps": request.steps,
        "guidance": request.guidance,
        "sampler": request.sampler or "",
        "scheduler": request.scheduler or "",
        "loras": [[lora.id, lora.strength] for lora in request.loras],
        "references": [[ref.role.value, ref.locator] for ref in request.references],
        "tokenType": request.token_type,
        "fps": request.fps,
        "duration": request.duration,
        "frames": request.frames,
        "autoResizeVideoAssets": request.auto_resize_assets,
        "angle": dict(angle) if angle else {},
    }


def prompt_hash_seed(payload: Mapping[str, Any]) -> int:
    digest = hashlib.sha256(stable_json(payload).encode("utf-8")).digest()
    return int.from_bytes(digest[: SEED_BITS // 8], "big")


def random_seed() -> int:
    return secrets.randbits(SEED_BITS)


def derive_seed(strategy: SeedStrategy, payload: Mapping[str, Any]) -> int:
    if strategy is SeedStrategy.RANDOM:
        return random_seed()
    return prompt_hash_seed(payload)

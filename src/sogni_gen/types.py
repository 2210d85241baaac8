from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ArtifactKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class VideoWorkflow(str, Enum):
    T2V = "t2v"
    I2V = "i2v"
    S2V = "s2v"
    ANIMATE_MOVE = "animate-move"
    ANIMATE_REPLACE = "animate-replace"
    V2V = "v2v"


class AssetRole(str, Enum):
    START_FRAME = "start-frame"
    END_FRAME = "end-frame"
    AUDIO = "audio"
    DRIVING_VIDEO = "driving-video"
    CONTEXT_IMAGE = "context-image"


class SeedStrategy(str, Enum):
    RANDOM = "random"
    PROMPT_HASH = "prompt-hash"


@dataclass(frozen=True)
class ReferenceAsset:
    role: AssetRole
    locator: str


@dataclass(frozen=True)
class LoraSpec:
    id: str
    strength: float = 1.0


@dataclass(frozen=True)
class DimensionSpec:
    width: int
    height: int
    explicit: bool = False

    def as_pair(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ReferenceSize:
    """Intrinsic pixel size of a reference asset."""

    width: int
    height: int
    role: Optional[AssetRole] = None

    @property
    def aspect(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class GenerationRequest:
    """Canonical, complete description of one generation job.

    Built only by the compiler, after every compatibility rule has passed.
    """

    kind: ArtifactKind
    model: str
    prompt: str
    width: int
    height: int
    count: int = 1
    seed: Optional[int] = None
    seed_strategy: Optional[SeedStrategy] = None
    workflow: Optional[VideoWorkflow] = None
    output_format: Optional[str] = None
    steps: Optional[int] = None
    guidance: Optional[float] = None
    sampler: Optional[str] = None
    scheduler: Optional[str] = None
    references: tuple[ReferenceAsset, ...] = ()
    loras: tuple[LoraSpec, ...] = ()
    token_type: str = "spark"
    fps: Optional[int] = None
    duration: Optional[float] = None
    frames: Optional[int] = None
    auto_resize_assets: Optional[bool] = None
    label: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.kind is ArtifactKind.VIDEO

    @property
    def is_edit(self) -> bool:
        return not self.is_video and bool(self.locators(AssetRole.CONTEXT_IMAGE))

    def locators(self, role: AssetRole) -> list[str]:
        return [ref.locator for ref in self.references if ref.role is role]

    def reference(self, role: AssetRole) -> Optional[str]:
        found = self.locators(role)
        return found[0] if found else None


@dataclass(frozen=True)
class JobOutcome:
    """One completed generation unit."""

    url: str
    seed: Optional[int]
    unit_index: int
    correlation_id: Optional[str]

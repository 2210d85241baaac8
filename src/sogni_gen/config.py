from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dimensions import DEFAULT_MAX_DIMENSION, DEFAULT_SIZE_LIMIT, VIDEO_SIZE_MULTIPLE
from .errors import ConfigError
from .models import normalize_video_workflow
from .seeds import normalize_seed_strategy

CONFIG_FILENAME = "sogni-gen.toml"
CONFIG_ENV = "SOGNI_GEN_CONFIG"
USER_CONFIG_PATH = Path.home() / ".config" / "sogni" / CONFIG_FILENAME


class ModelDefaultsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    steps: Optional[int] = Field(default=None, gt=0)
    guidance: Optional[float] = Field(default=None, ge=0.0)


class PlaceholderClientConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    output_dir: Optional[Path] = None
    latency_sec: float = Field(default=0.0, ge=0.0)


class CustomClientConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    factory: str

    @field_validator("factory")
    @classmethod
    def validate_factory(cls, v: str) -> str:
        if ":" not in v:
            raise ValueError("factory must look like 'package.module:callable'")
        return v


class ClientsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    placeholder: Optional[PlaceholderClientConfig] = None

    def custom(self, name: str) -> Optional[CustomClientConfig]:
        raw = (self.model_extra or {}).get(name)
        if raw is None:
            return None
        return CustomClientConfig.model_validate(raw)

    def names(self) -> set[str]:
        return {"placeholder"} | set(self.model_extra or {})


class GenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_width: int = Field(default=512, gt=0)
    default_height: int = Field(default=512, gt=0)
    default_count: int = Field(default=1, ge=1)
    default_token_type: str = "spark"
    seed_strategy: Optional[str] = None
    default_video_workflow: Optional[str] = None
    default_fps: int = Field(default=16, gt=0)
    default_duration_sec: float = Field(default=5, gt=0)
    default_image_timeout_sec: float = Field(default=30, gt=0)
    default_edit_timeout_sec: float = Field(default=60, gt=0)
    default_video_timeout_sec: float = Field(default=300, gt=0)
    default_image_model: Optional[str] = None
    default_edit_model: Optional[str] = None
    video_models: dict[str, str] = Field(default_factory=dict)
    model_defaults: dict[str, ModelDefaultsConfig] = Field(default_factory=dict)
    context_image_limits: dict[str, int] = Field(default_factory=dict)
    video_size_multiple: int = Field(default=VIDEO_SIZE_MULTIPLE, gt=0)
    video_max_dimension: int = Field(default=DEFAULT_MAX_DIMENSION, gt=0)
    video_size_limit: int = Field(default=DEFAULT_SIZE_LIMIT, gt=0)
    strict_video_size: bool = False
    angle_prompt_template: Optional[str] = None
    ffmpeg_path: Optional[str] = None
    default_client: str = "placeholder"
    clients: ClientsConfig = ClientsConfig()

    @field_validator("default_token_type")
    @classmethod
    def validate_token_type(cls, v: str) -> str:
        token = v.lower()
        if token not in ("spark", "sogni"):
            raise ValueError('default_token_type must be "spark" or "sogni"')
        return token

    @field_validator("seed_strategy")
    @classmethod
    def validate_seed_strategy(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        strategy = normalize_seed_strategy(v)
        if strategy is None:
            raise ValueError('seed_strategy must be "random" or "prompt-hash"')
        return strategy.value

    @field_validator("default_video_workflow")
    @classmethod
    def validate_default_workflow(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        workflow = normalize_video_workflow(v)
        if workflow is None:
            raise ValueError(f"unknown video workflow '{v}'")
        return workflow.value

    @field_validator("video_models")
    @classmethod
    def validate_video_models(cls, v: dict[str, str]) -> dict[str, str]:
        normalized: dict[str, str] = {}
        for key, model in v.items():
            workflow = normalize_video_workflow(key)
            if workflow is None:
                raise ValueError(f"unknown video workflow '{key}' in video_models")
            normalized[workflow.value] = model
        return normalized

    @model_validator(mode="after")
    def check_default_client_exists(self) -> "GenConfig":
        if not self.default_client:
            raise ValueError("default_client cannot be empty")
        available = self.clients.names()
        if self.default_client not in available:
            raise ValueError(
                f"default_client '{self.default_client}' is not configured. "
                f"Available clients: {sorted(available)}"
            )
        return self

    def model_defaults_for(self, model_id: str) -> Optional[ModelDefaultsConfig]:
        return self.model_defaults.get(model_id)

    def resolved_ffmpeg_path(self) -> str:
        return self.ffmpeg_path or os.environ.get("FFMPEG_PATH") or "ffmpeg"


def _line_from_toml_error(e: tomllib.TOMLDecodeError) -> Optional[int]:
    return getattr(e, "lineno", None)


def load_config(config_path: Path) -> GenConfig:
    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}\n"
            f"Create it or point {CONFIG_ENV} at an existing {CONFIG_FILENAME}",
            path=config_path,
        )

    try:
        data: dict[str, Any] = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse TOML: {e}", path=config_path, line=_line_from_toml_error(e)) from e
    except OSError as e:
        raise ConfigError(f"Failed to read config: {e}", path=config_path) from e

    try:
        return GenConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", path=config_path) from e


def find_config(start_dir: Optional[Path] = None) -> Optional[Path]:
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)

    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()
    while current != current.parent:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        current = current.parent

    if USER_CONFIG_PATH.exists():
        return USER_CONFIG_PATH
    return None


def load_effective_config(config_path: Optional[Path] = None) -> GenConfig:
    """Load the named config, or the discovered one, or built-in defaults."""
    if config_path is None:
        config_path = find_config()
        if config_path is None:
            return GenConfig()
    return load_config(config_path)

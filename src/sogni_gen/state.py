from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .options import GenOptions

logger = logging.getLogger(__name__)

STATE_ENV = "SOGNI_GEN_STATE_PATH"
DEFAULT_STATE_PATH = Path.home() / ".config" / "sogni" / "last-render.json"


class LastRender(BaseModel):
    """The record kept for the most recent successful run."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    timestamp: Optional[str] = None
    type: Optional[str] = None
    model: Optional[str] = None
    seed: Optional[int] = None
    urls: list[str] = Field(default_factory=list)
    local_path: Optional[str] = Field(default=None, alias="localPath")

    def image_locator(self) -> Optional[str]:
        """Local file if it still exists, otherwise the first URL."""
        if self.local_path and Path(self.local_path).is_file():
            return self.local_path
        return self.urls[0] if self.urls else None


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_state_path() -> Path:
    env_path = os.environ.get(STATE_ENV)
    return Path(env_path) if env_path else DEFAULT_STATE_PATH


class LastRenderStore:
    def __init__(self, path: Optional[Path] = None):
        self.path = path or default_state_path()

    def read(self) -> Optional[LastRender]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return LastRender.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable last render at {self.path}: {e}")
            return None

    def write(self, record: dict[str, Any]) -> None:
        """Persist ``record``; failures are logged and otherwise ignored."""
        data = {"timestamp": now_utc_iso(), **record}
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning(f"Could not save last render to {self.path}: {e}")


def apply_last_render(
    opts: GenOptions,
    store: LastRenderStore,
    use_last_seed: bool = False,
    use_last_image: bool = False,
) -> GenOptions:
    """Fill ``seed`` / ``last_image`` from the previous run."""
    if not use_last_seed and not use_last_image:
        return opts
    record = store.read()

    updates: dict[str, Any] = {}
    if use_last_seed:
        if record is None or record.seed is None:
            logger.warning("No previous render found, using new seed")
        else:
            updates["seed"] = record.seed
            logger.info(f"Using seed from last render: {record.seed}")
    if use_last_image:
        locator = record.image_locator() if record else None
        if locator is None:
            logger.warning("No previous render image found, ignoring --last-image")
        else:
            updates["last_image"] = locator
    return replace(opts, **updates) if updates else opts

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from .errors import RequestValidationError

ANGLE_TOKEN = "<sks>"
MULTI_ANGLE_LORA = "multiple_angles"
DEFAULT_ANGLE_STRENGTH = 0.9

AZIMUTHS: dict[str, str] = {
    "front": "front view",
    "front-right": "front-right quarter view",
    "right": "right side view",
    "back-right": "back-right quarter view",
    "back": "back view",
    "back-left": "back-left quarter view",
    "left": "left side view",
    "front-left": "front-left quarter view",
}

ELEVATIONS: dict[str, str] = {
    "low-angle": "low-angle shot",
    "eye-level": "eye-level shot",
    "elevated": "elevated shot",
    "high-angle": "high-angle shot",
}

DISTANCES: dict[str, str] = {
    "close-up": "close-up",
    "medium": "medium shot",
    "wide": "wide shot",
}

AZIMUTH_ALIASES = {
    "front-right quarter": "front-right",
    "front right quarter": "front-right",
    "back-right quarter": "back-right",
    "back right quarter": "back-right",
    "back-left quarter": "back-left",
    "back left quarter": "back-left",
    "front-left quarter": "front-left",
    "front left quarter": "front-left",
}

ELEVATION_ALIASES = {
    "low angle": "low-angle",
    "eye level": "eye-level",
    "high angle": "high-angle",
}

DISTANCE_ALIASES = {
    "close up": "close-up",
    "medium shot": "medium",
    "wide shot": "wide",
}

# Sweep order for 360 sets; stitched loops interpolate between neighbours.
SWEEP_ORDER: tuple[str, ...] = tuple(AZIMUTHS)

DEFAULT_PROMPT_TEMPLATE = (
    "{{ token }} {{ azimuth }} {{ elevation }} {{ distance }}"
    "{% if description %} {{ description }}{% endif %}"
)

_env = Environment(undefined=StrictUndefined, autoescape=False, trim_blocks=True, lstrip_blocks=True)


@dataclass(frozen=True)
class AngleSpec:
    azimuth: str
    elevation: str
    distance: str
    description: str = ""

    def as_dict(self) -> dict[str, str]:
        return {
            "azimuth": self.azimuth,
            "elevation": self.elevation,
            "distance": self.distance,
            "description": self.description,
        }


def _normalize(value: str, aliases: dict[str, str], allowed: dict[str, str], label: str) -> str:
    cleaned = re.sub(r"\s+", " ", value.lower().replace("_", "-")).strip()
    key = aliases.get(cleaned, cleaned)
    if key not in allowed:
        raise RequestValidationError(
            f'Invalid {label} "{value}". Valid options: {", ".join(allowed)}'
        )
    return key


def normalize_azimuth(value: str) -> str:
    return _normalize(value, AZIMUTH_ALIASES, AZIMUTHS, "azimuth")


def normalize_elevation(value: str) -> str:
    return _normalize(value, ELEVATION_ALIASES, ELEVATIONS, "elevation")


def normalize_distance(value: str) -> str:
    return _normalize(value, DISTANCE_ALIASES, DISTANCES, "distance")


def build_angle_prompt(angle: AngleSpec, template: Optional[str] = None) -> str:
    """Render the edit prompt for one camera angle.

    Raises:
        RequestValidationError: If a custom template is malformed or uses an unknown variable.
    """
    try:
        tpl = _env.from_string(template or DEFAULT_PROMPT_TEMPLATE)
        text = tpl.render(
            token=ANGLE_TOKEN,
            azimuth=AZIMUTHS[angle.azimuth],
            elevation=ELEVATIONS[angle.elevation],
            distance=DISTANCES[angle.distance],
            description=angle.description,
            azimuth_key=angle.azimuth,
        )
    except (TemplateSyntaxError, UndefinedError) as e:
        raise RequestValidationError(f"Invalid angle prompt template: {e}") from e
    return " ".join(text.split())

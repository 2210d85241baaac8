from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from .errors import InvalidVideoSizeError, RequestValidationError
from .types import AssetRole, DimensionSpec, ReferenceSize

logger = logging.getLogger(__name__)

VIDEO_SIZE_MULTIPLE = 16
DEFAULT_SIZE = 512
DEFAULT_MAX_DIMENSION = 640
DEFAULT_SIZE_LIMIT = 2048
ASPECT_TOLERANCE = 0.02

# Number of candidate long-edge sizes tried below the budget when fitting an aspect ratio.
FIT_WINDOW = 4

_ROLE_LABELS = {
    AssetRole.START_FRAME: "start frame",
    AssetRole.END_FRAME: "end frame",
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_down_to_multiple(value: int, multiple: int) -> int:
    return max(multiple, (value // multiple) * multiple)


def aspect_deviation(actual: float, target: float) -> float:
    return abs(actual - target) / target


def fit_aspect(aspect: float, budget: int, multiple: int) -> tuple[int, int]:
    """Pick the width/height pair closest to ``aspect`` near a long-edge budget.

    Candidates are long edges from the budget (rounded down to ``multiple``)
    going down ``FIT_WINDOW`` steps. The short edge is rounded half-up to the
    nearest multiple. The candidate with the smallest relative aspect deviation
    wins; ties keep the larger long edge.
    """
    short_ratio = aspect if aspect <= 1 else 1 / aspect

    def candidate(long_edge: int) -> tuple[float, int, int]:
        short_edge = max(multiple, round_half_up(long_edge * short_ratio / multiple) * multiple)
        if aspect <= 1:
            width, height = short_edge, long_edge
        else:
            width, height = long_edge, short_edge
        return aspect_deviation(width / height, aspect), width, height

    top = round_down_to_multiple(budget, multiple)
    best = candidate(top)
    for step in range(1, FIT_WINDOW):
        long_edge = top - step * multiple
        if long_edge < multiple:
            break
        current = candidate(long_edge)
        if current[0] < best[0] - 1e-12:
            best = current
    return best[1], best[2]


def format_size_hint(width: int, height: int) -> str:
    return f"Use --width {width} --height {height}"


class DimensionResolver:
    """Turns requested sizes into final generation dimensions.

    Still images pass through untouched. Video sizes must be multiples of the
    constraint; in strict mode anything that would need correcting is rejected
    with a hint carrying a valid pair instead.
    """

    def __init__(
        self,
        default_size: tuple[int, int] = (DEFAULT_SIZE, DEFAULT_SIZE),
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        size_limit: int = DEFAULT_SIZE_LIMIT,
        tolerance: float = ASPECT_TOLERANCE,
    ):
        self.default_size = default_size
        self.max_dimension = max_dimension
        self.size_limit = size_limit
        self.tolerance = tolerance

    def resolve(
        self,
        requested: Optional[DimensionSpec],
        references: Sequence[ReferenceSize] = (),
        constraint_multiple: Optional[int] = None,
        strict: bool = False,
    ) -> DimensionSpec:
        if requested is not None:
            _check_positive(requested)

        if constraint_multiple is None:
            if requested is None:
                return DimensionSpec(self.default_size[0], self.default_size[1], explicit=False)
            return requested

        multiple = constraint_multiple
        primary = references[0] if references else None

        if requested is None or not requested.explicit:
            if primary is not None:
                width, height = fit_aspect(primary.aspect, self.max_dimension, multiple)
                logger.debug(
                    f"Fitted {width}x{height} to reference {primary.width}x{primary.height}"
                )
                return DimensionSpec(width, height, explicit=False)
            base = requested or DimensionSpec(self.default_size[0], self.default_size[1])
            width = round_down_to_multiple(base.width, multiple)
            height = round_down_to_multiple(base.height, multiple)
            self._check_limit(width, height, multiple)
            return DimensionSpec(width, height, explicit=False)

        width, height = requested.width, requested.height
        if width % multiple or height % multiple:
            if strict:
                if primary is not None:
                    hint_w, hint_h = fit_aspect(primary.aspect, self.max_dimension, multiple)
                else:
                    hint_w, hint_h = fit_aspect(width / height, max(width, height), multiple)
                raise InvalidVideoSizeError(
                    f"Video width and height must be divisible by {multiple} (got {width}x{height}).",
                    hint=format_size_hint(hint_w, hint_h),
                    details={"width": width, "height": height, "multiple": multiple},
                )
            width = round_down_to_multiple(width, multiple)
            height = round_down_to_multiple(height, multiple)
            logger.info(
                f"Adjusted video size {requested.width}x{requested.height} to {width}x{height} "
                f"(must be divisible by {multiple})"
            )

        self._check_limit(width, height, multiple)

        if strict:
            for ref in references:
                if aspect_deviation(width / height, ref.aspect) > self.tolerance:
                    hint_w, hint_h = fit_aspect(ref.aspect, self.max_dimension, multiple)
                    label = _ROLE_LABELS.get(ref.role, "reference")
                    raise InvalidVideoSizeError(
                        f"Video size {width}x{height} does not match the aspect ratio of the "
                        f"{label} image ({ref.width}x{ref.height}).",
                        hint=format_size_hint(hint_w, hint_h),
                        details={
                            "width": width,
                            "height": height,
                            "referenceRole": ref.role.value if ref.role else None,
                            "referenceWidth": ref.width,
                            "referenceHeight": ref.height,
                        },
                    )

        return DimensionSpec(width, height, explicit=True)

    def _check_limit(self, width: int, height: int, multiple: int) -> None:
        if width <= self.size_limit and height <= self.size_limit:
            return
        hint_w, hint_h = fit_aspect(width / height, self.size_limit, multiple)
        raise InvalidVideoSizeError(
            f"Video size {width}x{height} exceeds the {self.size_limit}px limit.",
            hint=format_size_hint(hint_w, hint_h),
            details={"width": width, "height": height, "limit": self.size_limit},
        )


def _check_positive(spec: DimensionSpec) -> None:
    if spec.width <= 0 or spec.height <= 0:
        raise RequestValidationError(
            f"Width and height must be positive (got {spec.width}x{spec.height})."
        )

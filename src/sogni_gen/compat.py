"""Which reference-asset roles each video workflow requires or rejects.

New workflows are added as rows of ``WORKFLOW_ROLES``; the checks below are
driven entirely by the table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import RequestValidationError
from .types import AssetRole, VideoWorkflow

ROLE_FLAGS: dict[AssetRole, str] = {
    AssetRole.START_FRAME: "--ref",
    AssetRole.END_FRAME: "--ref-end",
    AssetRole.AUDIO: "--ref-audio",
    AssetRole.DRIVING_VIDEO: "--ref-video",
    AssetRole.CONTEXT_IMAGE: "--context",
}

VIDEO_ONLY_ROLES = frozenset(
    {AssetRole.START_FRAME, AssetRole.END_FRAME, AssetRole.AUDIO, AssetRole.DRIVING_VIDEO}
)


@dataclass(frozen=True)
class RoleRule:
    required: frozenset[AssetRole] = frozenset()
    any_of: frozenset[AssetRole] = frozenset()
    forbidden: frozenset[AssetRole] = frozenset()


WORKFLOW_ROLES: dict[VideoWorkflow, RoleRule] = {
    VideoWorkflow.T2V: RoleRule(
        forbidden=frozenset(VIDEO_ONLY_ROLES | {AssetRole.CONTEXT_IMAGE}),
    ),
    VideoWorkflow.I2V: RoleRule(
        any_of=frozenset({AssetRole.START_FRAME, AssetRole.END_FRAME}),
        forbidden=frozenset({AssetRole.AUDIO, AssetRole.DRIVING_VIDEO, AssetRole.CONTEXT_IMAGE}),
    ),
    VideoWorkflow.S2V: RoleRule(
        required=frozenset({AssetRole.START_FRAME, AssetRole.AUDIO}),
        forbidden=frozenset({AssetRole.DRIVING_VIDEO, AssetRole.CONTEXT_IMAGE}),
    ),
    VideoWorkflow.ANIMATE_MOVE: RoleRule(
        required=frozenset({AssetRole.START_FRAME, AssetRole.DRIVING_VIDEO}),
        forbidden=frozenset({AssetRole.AUDIO, AssetRole.CONTEXT_IMAGE}),
    ),
    VideoWorkflow.ANIMATE_REPLACE: RoleRule(
        required=frozenset({AssetRole.START_FRAME, AssetRole.DRIVING_VIDEO}),
        forbidden=frozenset({AssetRole.AUDIO, AssetRole.CONTEXT_IMAGE}),
    ),
    VideoWorkflow.V2V: RoleRule(
        required=frozenset({AssetRole.DRIVING_VIDEO}),
        forbidden=frozenset(
            {AssetRole.START_FRAME, AssetRole.END_FRAME, AssetRole.AUDIO, AssetRole.CONTEXT_IMAGE}
        ),
    ),
}

# First matching role decides the workflow when nothing else names one.
ROLE_INFERENCE: list[tuple[AssetRole, VideoWorkflow]] = [
    (AssetRole.DRIVING_VIDEO, VideoWorkflow.ANIMATE_MOVE),
    (AssetRole.AUDIO, VideoWorkflow.S2V),
    (AssetRole.START_FRAME, VideoWorkflow.I2V),
    (AssetRole.END_FRAME, VideoWorkflow.I2V),
]


def _flags(roles: Iterable[AssetRole]) -> str:
    return ", ".join(sorted(ROLE_FLAGS[r] for r in roles))


def infer_workflow_from_roles(roles: Iterable[AssetRole]) -> Optional[VideoWorkflow]:
    present = set(roles)
    for role, workflow in ROLE_INFERENCE:
        if role in present:
            return workflow
    return None


def accepts_start_frame(workflow: VideoWorkflow) -> bool:
    rule = WORKFLOW_ROLES[workflow]
    return AssetRole.START_FRAME in rule.required | rule.any_of


def check_workflow_roles(workflow: VideoWorkflow, roles: Iterable[AssetRole]) -> None:
    present = set(roles)
    rule = WORKFLOW_ROLES[workflow]

    rejected = present & rule.forbidden
    if rejected:
        raise RequestValidationError(
            f"Workflow {workflow.value} does not accept {_flags(rejected)}.",
            details={"workflow": workflow.value, "rejected": sorted(ROLE_FLAGS[r] for r in rejected)},
        )

    missing = rule.required - present
    if missing:
        raise RequestValidationError(
            f"Workflow {workflow.value} requires {_flags(rule.required)} (missing {_flags(missing)}).",
            details={"workflow": workflow.value, "missing": sorted(ROLE_FLAGS[r] for r in missing)},
        )

    if rule.any_of and not (present & rule.any_of):
        flags = " and/or ".join(sorted(ROLE_FLAGS[r] for r in rule.any_of))
        raise RequestValidationError(
            f"Workflow {workflow.value} requires {flags}.",
            details={"workflow": workflow.value},
        )

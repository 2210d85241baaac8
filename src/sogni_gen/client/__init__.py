from .base import GenerationClient, SubmissionAck
from .events import EventKind, EventStream, JobFailed, Progress, UnitCompleted
from .placeholder import PlaceholderClient
from .registry import ClientRegistry

__all__ = [
    "ClientRegistry",
    "EventKind",
    "EventStream",
    "GenerationClient",
    "JobFailed",
    "PlaceholderClient",
    "Progress",
    "SubmissionAck",
    "UnitCompleted",
]

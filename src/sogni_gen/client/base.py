from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..types import GenerationRequest
from .events import EventStream


@dataclass(frozen=True)
class SubmissionAck:
    correlation_id: Optional[str] = None


class GenerationClient(ABC):
    """Boundary to a remote generation service.

    Submissions return as soon as the job is accepted; results arrive later
    on ``events``. One instance is shared for the life of the process and is
    used as an async context manager so it is released exactly once.
    """

    def __init__(self) -> None:
        self.events = EventStream()
        self._connected = False

    @property
    @abstractmethod
    def client_id(self) -> str: ...

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def __aenter__(self) -> "GenerationClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._connected:
            await self.disconnect()

    @abstractmethod
    async def submit_image_job(self, request: GenerationRequest) -> SubmissionAck: ...

    @abstractmethod
    async def submit_edit_job(self, request: GenerationRequest) -> SubmissionAck: ...

    @abstractmethod
    async def submit_video_job(self, request: GenerationRequest) -> SubmissionAck: ...

    @abstractmethod
    async def estimate_video_cost(self, request: GenerationRequest) -> dict[str, Any]: ...

    async def submit(self, request: GenerationRequest) -> SubmissionAck:
        if request.is_video:
            return await self.submit_video_job(request)
        if request.is_edit:
            return await self.submit_edit_job(request)
        return await self.submit_image_job(request)

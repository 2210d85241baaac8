from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from PIL import Image

from sogni_gen.client.base import GenerationClient, SubmissionAck
from sogni_gen.client.events import ClientEvent
from sogni_gen.types import GenerationRequest

Script = Callable[[GenerationRequest, str], list[ClientEvent]]


class ScriptedClient(GenerationClient):
    """Client double that replays scripted events after each submission."""

    def __init__(
        self,
        script: Optional[Script] = None,
        submit_error: Optional[Exception] = None,
        ack_ids: bool = True,
    ):
        super().__init__()
        self.script = script or (lambda request, cid: [])
        self.submit_error = submit_error
        self.ack_ids = ack_ids
        self.submitted: list[GenerationRequest] = []
        self.estimates: list[GenerationRequest] = []

    @property
    def client_id(self) -> str:
        return "scripted"

    async def _submit(self, request: GenerationRequest) -> SubmissionAck:
        self.submitted.append(request)
        if self.submit_error is not None:
            raise self.submit_error
        correlation_id = f"job-{len(self.submitted)}"
        loop = asyncio.get_running_loop()
        for event in self.script(request, correlation_id):
            loop.call_soon(self.events.emit, event)
        return SubmissionAck(correlation_id if self.ack_ids else None)

    async def submit_image_job(self, request: GenerationRequest) -> SubmissionAck:
        return await self._submit(request)

    async def submit_edit_job(self, request: GenerationRequest) -> SubmissionAck:
        return await self._submit(request)

    async def submit_video_job(self, request: GenerationRequest) -> SubmissionAck:
        return await self._submit(request)

    async def estimate_video_cost(self, request: GenerationRequest) -> dict[str, Any]:
        self.estimates.append(request)
        return {"token": 1.5, "usd": 0.01}


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str = "ref.png", size: tuple[int, int] = (64, 64)) -> Path:
        path = tmp_path / name
        Image.new("RGB", size, (120, 80, 40)).save(path)
        return path

    return _make

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .client.base import GenerationClient, SubmissionAck
from .client.events import ClientEvent, EventKind, JobFailed, Progress, UnitCompleted
from .errors import JobFailedError, JobTimeoutError, SogniGenError
from .types import GenerationRequest, JobOutcome

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = "No output generated - may have been filtered"


class _JobSettlement:
    """Tracks one submitted job from SUBMITTED until SETTLED.

    ``settled`` is resolved exactly once, with the collected outcomes or with
    the error that ended the job. Events seen before the submission is
    acknowledged are held back and replayed once the correlation id is known.
    """

    def __init__(
        self,
        request: GenerationRequest,
        expected_units: int,
        timeout_sec: float,
        loop: asyncio.AbstractEventLoop,
    ):
        self.request = request
        self.expected_units = expected_units
        self.timeout_sec = timeout_sec
        self.correlation_id: Optional[str] = None
        self.acknowledged = False
        self.outcomes: list[JobOutcome] = []
        self.settled: asyncio.Future[list[JobOutcome]] = loop.create_future()
        self._held: list[ClientEvent] = []

    def _accepts(self, event: ClientEvent) -> bool:
        if self.settled.done():
            return False
        if not self.acknowledged:
            self._held.append(event)
            return False
        if self.correlation_id is None:
            self.correlation_id = event.correlation_id
        return event.correlation_id == self.correlation_id

    def _succeed(self) -> None:
        if not self.settled.done():
            self.settled.set_result(list(self.outcomes))

    def fail(self, error: SogniGenError) -> None:
        if not self.settled.done():
            self.outcomes.clear()
            self.settled.set_exception(error)

    def acknowledge(self, ack: SubmissionAck) -> None:
        self.correlation_id = ack.correlation_id
        self.acknowledged = True
        held, self._held = self._held, []
        for event in held:
            self.on_event(event)

    def on_event(self, event: ClientEvent) -> None:
        if not self._accepts(event):
            return
        if isinstance(event, UnitCompleted):
            self._on_unit(event)
        elif isinstance(event, JobFailed):
            self.fail(JobFailedError(event.error or "Job failed", event.correlation_id))
        elif isinstance(event, Progress):
            logger.info(f"Progress: {event.percentage:.0f}%")

    def _on_unit(self, event: UnitCompleted) -> None:
        self.outcomes.append(
            JobOutcome(
                url=event.url or "",
                seed=event.seed if event.seed is not None else self.request.seed,
                unit_index=event.unit_index,
                correlation_id=event.correlation_id,
            )
        )
        received = len(self.outcomes)
        noun = "Video" if self.request.is_video else "Image"
        label = f" ({self.request.label})" if self.request.label else ""
        logger.info(f"{noun} {received}/{self.expected_units}{label} completed")
        if received >= self.expected_units:
            self._succeed()

    def on_timeout(self) -> None:
        self.fail(JobTimeoutError(self.timeout_sec, self.correlation_id))


class JobOrchestrator:
    """Runs one request against the client and waits for it to settle.

    Listeners are registered before submission and removed on every
    settlement path, so sequential runs on a shared client never see each
    other's handlers.
    """

    def __init__(self, client: GenerationClient):
        self.client = client

    async def run(
        self,
        request: GenerationRequest,
        expected_units: Optional[int] = None,
        timeout_sec: float = 30.0,
    ) -> list[JobOutcome]:
        expected = expected_units if expected_units is not None else request.count
        if expected < 1:
            raise ValueError("expected_units must be at least 1")

        loop = asyncio.get_running_loop()
        job = _JobSettlement(request, expected, timeout_sec, loop)
        events = self.client.events
        kinds = [
            EventKind.UNIT_COMPLETED,
            EventKind.JOB_FAILED,
        ]
        if request.is_video:
            kinds.append(EventKind.PROGRESS)

        for kind in kinds:
            events.on(kind, job.on_event)
        timer = loop.call_later(timeout_sec, job.on_timeout)
        try:
            submission = asyncio.ensure_future(self.client.submit(request))
            await asyncio.wait({submission, job.settled}, return_when=asyncio.FIRST_COMPLETED)
            if submission.done():
                self._acknowledge(job, submission)
            else:
                submission.cancel()
            outcomes = await job.settled
        finally:
            timer.cancel()
            for kind in kinds:
                events.off(kind, job.on_event)

        return self._with_urls(outcomes, job.correlation_id)

    def _acknowledge(self, job: _JobSettlement, submission: "asyncio.Future[SubmissionAck]") -> None:
        error = submission.exception()
        if error is None:
            job.acknowledge(submission.result())
        elif isinstance(error, SogniGenError):
            job.fail(error)
        else:
            job.fail(JobFailedError(f"Submission failed: {error}"))

    def _with_urls(self, outcomes: list[JobOutcome], correlation_id: Optional[str]) -> list[JobOutcome]:
        delivered = [o for o in outcomes if o.url]
        if not delivered:
            raise JobFailedError(NO_OUTPUT_MESSAGE, correlation_id)
        if len(delivered) < len(outcomes):
            logger.warning(f"{len(outcomes) - len(delivered)} result(s) had no output URL")
        return delivered

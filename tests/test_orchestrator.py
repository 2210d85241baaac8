from __future__ import annotations

import pytest

from conftest import ScriptedClient
from sogni_gen.client.events import EventKind, JobFailed, Progress, UnitCompleted
from sogni_gen.errors import JobFailedError, JobTimeoutError, ToolUnavailableError
from sogni_gen.orchestrator import JobOrchestrator
from sogni_gen.types import ArtifactKind, GenerationRequest, VideoWorkflow


def _image(count: int = 1) -> GenerationRequest:
    return GenerationRequest(
        kind=ArtifactKind.IMAGE, model="z_image_turbo_bf16", prompt="cat", width=512, height=512, count=count, seed=7
    )


def _video() -> GenerationRequest:
    return GenerationRequest(
        kind=ArtifactKind.VIDEO,
        workflow=VideoWorkflow.T2V,
        model="wan_v2.2-14b-fp8_t2v_lightx2v",
        prompt="waves",
        width=512,
        height=512,
        fps=16,
        duration=5,
    )


def _assert_no_listeners(client: ScriptedClient) -> None:
    assert client.events.listener_count() == 0


class TestJobOrchestrator:
    @pytest.mark.asyncio
    async def test_collects_all_units(self):
        client = ScriptedClient(
            lambda req, cid: [UnitCompleted(cid, i, f"https://cdn/{i}.png", 100 + i) for i in range(3)]
        )
        outcomes = await JobOrchestrator(client).run(_image(3), 3, timeout_sec=1)
        assert [o.url for o in outcomes] == ["https://cdn/0.png", "https://cdn/1.png", "https://cdn/2.png"]
        assert [o.seed for o in outcomes] == [100, 101, 102]
        _assert_no_listeners(client)

    @pytest.mark.asyncio
    async def test_receipt_order_not_index_order(self):
        client = ScriptedClient(
            lambda req, cid: [UnitCompleted(cid, 1, "b"), UnitCompleted(cid, 0, "a")]
        )
        outcomes = await JobOrchestrator(client).run(_image(2), 2, timeout_sec=1)
        assert [o.unit_index for o in outcomes] == [1, 0]

    @pytest.mark.asyncio
    async def test_ignores_other_jobs(self):
        client = ScriptedClient(
            lambda req, cid: [
                UnitCompleted("someone-else", 0, "other"),
                UnitCompleted(cid, 0, "mine-0"),
                UnitCompleted("someone-else", 1, "other"),
                UnitCompleted(cid, 1, "mine-1"),
            ]
        )
        outcomes = await JobOrchestrator(client).run(_image(2), 2, timeout_sec=1)
        assert [o.url for o in outcomes] == ["mine-0", "mine-1"]
        assert {o.correlation_id for o in outcomes} == {"job-1"}

    @pytest.mark.asyncio
    async def test_latches_first_event_without_ack_id(self):
        client = ScriptedClient(
            lambda req, cid: [UnitCompleted("first", 0, "a"), UnitCompleted("second", 0, "b"), UnitCompleted("first", 1, "c")],
            ack_ids=False,
        )
        outcomes = await JobOrchestrator(client).run(_image(2), 2, timeout_sec=1)
        assert [o.url for o in outcomes] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_failure_event_settles_as_failure(self):
        client = ScriptedClient(
            lambda req, cid: [UnitCompleted(cid, 0, "a"), JobFailed(cid, "NSFW filter")]
        )
        with pytest.raises(JobFailedError) as exc_info:
            await JobOrchestrator(client).run(_image(2), 2, timeout_sec=1)
        assert "NSFW filter" in exc_info.value.message
        assert exc_info.value.code == "JOB_FAILED"
        _assert_no_listeners(client)

    @pytest.mark.asyncio
    async def test_failure_for_other_job_ignored(self):
        client = ScriptedClient(
            lambda req, cid: [JobFailed("someone-else", "boom"), UnitCompleted(cid, 0, "a")]
        )
        outcomes = await JobOrchestrator(client).run(_image(), 1, timeout_sec=1)
        assert [o.url for o in outcomes] == ["a"]

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = ScriptedClient(lambda req, cid: [UnitCompleted(cid, 0, "a")])
        with pytest.raises(JobTimeoutError) as exc_info:
            await JobOrchestrator(client).run(_image(2), 2, timeout_sec=0.05)
        assert exc_info.value.code == "TIMEOUT"
        assert "0.05" in exc_info.value.message
        _assert_no_listeners(client)

    @pytest.mark.asyncio
    async def test_submission_error(self):
        client = ScriptedClient(submit_error=ConnectionError("socket closed"))
        with pytest.raises(JobFailedError) as exc_info:
            await JobOrchestrator(client).run(_image(), 1, timeout_sec=1)
        assert "socket closed" in exc_info.value.message
        _assert_no_listeners(client)

    @pytest.mark.asyncio
    async def test_submission_sogni_error_kept(self):
        client = ScriptedClient(submit_error=ToolUnavailableError("no transport"))
        with pytest.raises(ToolUnavailableError):
            await JobOrchestrator(client).run(_image(), 1, timeout_sec=1)

    @pytest.mark.asyncio
    async def test_no_urls_is_job_failed(self):
        client = ScriptedClient(lambda req, cid: [UnitCompleted(cid, 0, None)])
        with pytest.raises(JobFailedError) as exc_info:
            await JobOrchestrator(client).run(_image(), 1, timeout_sec=1)
        assert "No output generated" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_progress_only_tracked_for_video(self):
        seen: list[int] = []

        def script(req, cid):
            seen.append(client.events.listener_count(EventKind.PROGRESS))
            return [Progress(cid, 50.0), UnitCompleted(cid, 0, "clip.mp4")]

        client = ScriptedClient(script)
        orchestrator = JobOrchestrator(client)
        await orchestrator.run(_image(), 1, timeout_sec=1)
        await orchestrator.run(_video(), 1, timeout_sec=1)
        assert seen == [0, 1]
        _assert_no_listeners(client)

    @pytest.mark.asyncio
    async def test_sequential_runs_do_not_leak(self):
        client = ScriptedClient(lambda req, cid: [UnitCompleted(cid, 0, f"{cid}.png")])
        orchestrator = JobOrchestrator(client)
        first = await orchestrator.run(_image(), 1, timeout_sec=1)
        second = await orchestrator.run(_image(), 1, timeout_sec=1)
        assert first[0].url == "job-1.png"
        assert second[0].url == "job-2.png"
        _assert_no_listeners(client)

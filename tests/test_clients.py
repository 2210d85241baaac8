from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from sogni_gen.client.base import GenerationClient
from sogni_gen.client.events import EventKind, EventStream, JobFailed, UnitCompleted
from sogni_gen.client.placeholder import PlaceholderClient
from sogni_gen.client.registry import ClientRegistry
from sogni_gen.config import ConfigError, GenConfig, PlaceholderClientConfig, load_config
from sogni_gen.errors import JobFailedError
from sogni_gen.media import local_path
from sogni_gen.orchestrator import JobOrchestrator
from sogni_gen.types import ArtifactKind, AssetRole, GenerationRequest, ReferenceAsset, VideoWorkflow


def build_custom_client(**options) -> GenerationClient:
    client = PlaceholderClient(PlaceholderClientConfig(**options))
    return client


def build_not_a_client(**options):
    return object()


class TestEventStream:
    def test_on_off_emit(self):
        stream = EventStream()
        seen = []
        stream.on(EventKind.UNIT_COMPLETED, seen.append)
        stream.emit(UnitCompleted("c", 0, "u"))
        stream.emit(JobFailed("c", "x"))
        stream.off(EventKind.UNIT_COMPLETED, seen.append)
        stream.emit(UnitCompleted("c", 1, "u"))
        assert [e.unit_index for e in seen] == [0]
        assert stream.listener_count() == 0

    def test_off_unknown_listener_is_noop(self):
        EventStream().off(EventKind.PROGRESS, print)


class TestClientRegistry:
    def test_get_placeholder_client(self):
        registry = ClientRegistry(GenConfig())
        client = registry.get_default_client()
        assert isinstance(client, PlaceholderClient)
        assert client.client_id == "placeholder"

    def test_client_is_cached(self):
        registry = ClientRegistry(GenConfig())
        assert registry.get_client("placeholder") is registry.get_client("placeholder")

    def test_unknown_client(self):
        with pytest.raises(ConfigError) as exc_info:
            ClientRegistry(GenConfig()).get_client("openai")
        assert "openai" in str(exc_info.value)
        assert "placeholder" in str(exc_info.value)

    def test_custom_factory(self, tmp_path: Path):
        config_file = tmp_path / "sogni-gen.toml"
        config_file.write_text(f"""
default_client = "mine"

[clients.mine]
factory = "test_clients:build_custom_client"
latency_sec = 0.25
output_dir = "{tmp_path.as_posix()}/renders"
""")
        client = ClientRegistry(load_config(config_file)).get_default_client()
        assert isinstance(client, PlaceholderClient)
        assert client.latency_sec == 0.25

    def test_factory_must_return_client(self, tmp_path: Path):
        config_file = tmp_path / "sogni-gen.toml"
        config_file.write_text("""
[clients.bad]
factory = "test_clients:build_not_a_client"
""")
        with pytest.raises(ConfigError) as exc_info:
            ClientRegistry(load_config(config_file)).get_client("bad")
        assert "GenerationClient" in str(exc_info.value)

    def test_factory_import_error(self, tmp_path: Path):
        config_file = tmp_path / "sogni-gen.toml"
        config_file.write_text("""
[clients.gone]
factory = "no_such_module_here:build"
""")
        with pytest.raises(ConfigError):
            ClientRegistry(load_config(config_file)).get_client("gone")


class TestPlaceholderClient:
    def _client(self, tmp_path: Path) -> PlaceholderClient:
        return PlaceholderClient(PlaceholderClientConfig(output_dir=tmp_path / "out"))

    @pytest.mark.asyncio
    async def test_renders_images(self, tmp_path: Path):
        request = GenerationRequest(
            kind=ArtifactKind.IMAGE, model="m", prompt="a cat", width=96, height=64, count=2, seed=10,
            output_format="jpg",
        )
        async with self._client(tmp_path) as client:
            outcomes = await JobOrchestrator(client).run(request, 2, timeout_sec=10)
        assert sorted(o.seed for o in outcomes) == [10, 11]
        for outcome in outcomes:
            path = local_path(outcome.url)
            assert path.suffix == ".jpg"
            with Image.open(path) as img:
                assert img.size == (96, 64)

    @pytest.mark.asyncio
    async def test_edit_uses_context_image(self, tmp_path: Path, make_image):
        ref = make_image("ctx.png", (200, 100))
        request = GenerationRequest(
            kind=ArtifactKind.IMAGE, model="qwen_image_edit_2511_fp8", prompt="edit", width=64, height=64,
            references=(ReferenceAsset(AssetRole.CONTEXT_IMAGE, str(ref)),),
        )
        async with self._client(tmp_path) as client:
            outcomes = await JobOrchestrator(client).run(request, 1, timeout_sec=10)
        with Image.open(local_path(outcomes[0].url)) as img:
            assert img.size == (64, 64)

    @pytest.mark.asyncio
    async def test_video_without_ffmpeg_fails(self, tmp_path: Path):
        request = GenerationRequest(
            kind=ArtifactKind.VIDEO, workflow=VideoWorkflow.T2V, model="m", prompt="waves",
            width=32, height=32, fps=4, duration=1,
        )
        with patch("sogni_gen.render.video.check_ffmpeg", return_value=False):
            async with self._client(tmp_path) as client:
                with pytest.raises(JobFailedError) as exc_info:
                    await JobOrchestrator(client).run(request, 1, timeout_sec=10)
        assert "ffmpeg not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_estimate(self, tmp_path: Path):
        request = GenerationRequest(
            kind=ArtifactKind.VIDEO, workflow=VideoWorkflow.T2V, model="m", prompt="waves",
            width=512, height=512, fps=16, duration=5, steps=4,
        )
        async with self._client(tmp_path) as client:
            estimate = await client.estimate_video_cost(request)
        assert estimate["frames"] == 80
        assert estimate["steps"] == 4

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, tmp_path: Path):
        client = self._client(tmp_path)
        async with client:
            assert client.connected
        assert not client.connected

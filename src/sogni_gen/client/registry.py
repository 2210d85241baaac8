from __future__ import annotations

import importlib
import logging
from typing import Any

from ..config import ConfigError, GenConfig
from .base import GenerationClient
from .placeholder import PlaceholderClient

logger = logging.getLogger(__name__)


class ClientRegistry:
    def __init__(self, config: GenConfig):
        self._config = config
        self._clients: dict[str, GenerationClient] = {}

    @property
    def config(self) -> GenConfig:
        return self._config

    def get_client(self, name: str) -> GenerationClient:
        if name in self._clients:
            return self._clients[name]

        client = self._instantiate_client(name)
        self._clients[name] = client
        return client

    def get_default_client(self) -> GenerationClient:
        return self.get_client(self._config.default_client)

    def _instantiate_client(self, name: str) -> GenerationClient:
        if name == "placeholder":
            return PlaceholderClient(
                self._config.clients.placeholder,
                ffmpeg_path=self._config.resolved_ffmpeg_path(),
            )

        custom = self._config.clients.custom(name)
        if custom is not None:
            return self._load_factory(name, custom.factory, custom.model_extra or {})

        available = self._config.clients.names()
        raise ConfigError(
            f"Unknown client: '{name}'. Available clients: {sorted(available)}"
        )

    def _load_factory(self, name: str, factory: str, options: dict[str, Any]) -> GenerationClient:
        module_name, _, attr = factory.partition(":")
        try:
            module = importlib.import_module(module_name)
            builder = getattr(module, attr)
        except (ImportError, AttributeError) as e:
            raise ConfigError(f"Client '{name}': cannot load factory '{factory}': {e}") from e

        client = builder(**options)
        if not isinstance(client, GenerationClient):
            raise ConfigError(
                f"Client '{name}': factory '{factory}' did not return a GenerationClient"
            )
        logger.debug(f"Loaded client '{name}' from {factory}")
        return client

"""Storage container with configuration-driven backend selection."""

from __future__ import annotations

import importlib
from typing import Any

from .config import StoreConfig
from .contracts import StoreRepository
from .service import StoreService

# @@@backend-registry - maps backend name → (module path, class name); selection is explicit, never by type sniffing.
_BACKEND_REGISTRY: dict[str, tuple[str, str]] = {
    "filesystem": ("storage.providers.filesystem.file_repo", "FileSystemRepository"),
    "github": ("storage.providers.github.content_repo", "GitHubRepository"),
}


class StorageContainer:
    """Composition root for the store.

    Args:
        config: which backend to build and its settings
        http_client: optional ``httpx.AsyncClient`` handed to the GitHub backend
    """

    def __init__(self, config: StoreConfig | None = None, http_client: Any | None = None) -> None:
        self._config = config or StoreConfig()
        self._http_client = http_client
        self._repository: StoreRepository | None = None

    @property
    def config(self) -> StoreConfig:
        return self._config

    def repository(self) -> StoreRepository:
        if self._repository is None:
            self._repository = build_repository(self._config, http_client=self._http_client)
        return self._repository

    def store_service(self) -> StoreService:
        return StoreService(self.repository())

    async def close(self) -> None:
        if self._repository is not None:
            await self._repository.close()
            self._repository = None


def build_repository(config: StoreConfig, http_client: Any | None = None) -> StoreRepository:
    """Instantiate the backend named by ``config.backend``."""
    if config.backend not in _BACKEND_REGISTRY:
        supported = ", ".join(sorted(_BACKEND_REGISTRY))
        raise ValueError(f"Unsupported store backend: {config.backend}. Supported backends: {supported}")

    mod_path, cls_name = _BACKEND_REGISTRY[config.backend]
    cls = getattr(importlib.import_module(mod_path), cls_name)
    if config.backend == "github":
        return cls(config.github, client=http_client)
    return cls(config.filesystem)


def create_store_service(config: StoreConfig | None = None) -> StoreService:
    """Build a StoreService for ``config`` (defaults to the environment)."""
    return StoreService(build_repository(config or StoreConfig.from_env()))

"""Capability contract every storage backend implements.

Implementations:
- FileSystemRepository: sandboxed local directory with sidecar metadata
- GitHubRepository: GitHub contents / git-data API
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .errors import RepositoryError, StoreErrorCode
from .models import (
    CreateDirectoryOptions,
    CreateFileOptions,
    RepositoryFile,
    UpdateFileOptions,
)

logger = logging.getLogger(__name__)


class StoreRepository(ABC):
    """Abstract path store.

    Paths are relative to the backend's root (local data directory or
    remote base directory). Every write that carries a ``sha`` is rejected
    with ``CONFLICT`` when the stored hash differs.
    """

    name: str = "abstract"

    @abstractmethod
    async def create_file(self, path: str, options: CreateFileOptions) -> RepositoryFile:
        """Create a new file.

        Raises:
            RepositoryError: ALREADY_EXISTS if the path is taken
        """
        ...

    @abstractmethod
    async def update_file(self, path: str, options: UpdateFileOptions) -> RepositoryFile:
        """Replace a file's content if ``options.sha`` matches the stored hash.

        Raises:
            RepositoryError: CONFLICT on hash mismatch, NOT_FOUND if missing
        """
        ...

    @abstractmethod
    async def retrieve_file(self, path: str, ref: str | None = None) -> RepositoryFile:
        """Read a file with its content.

        Raises:
            RepositoryError: NOT_FOUND, IS_DIRECTORY
        """
        ...

    @abstractmethod
    async def delete_file(self, path: str, message: str, sha: str, branch: str | None = None) -> None:
        """Delete a file if ``sha`` matches the stored hash.

        Raises:
            RepositoryError: CONFLICT on hash mismatch, NOT_FOUND if missing
        """
        ...

    @abstractmethod
    async def create_directory(self, path: str, options: CreateDirectoryOptions) -> RepositoryFile:
        """Create a directory (established by a marker file where needed)."""
        ...

    @abstractmethod
    async def list_directory(self, path: str = "", ref: str | None = None) -> list[RepositoryFile]:
        """List immediate children of a directory. Order is backend-defined."""
        ...

    @abstractmethod
    async def exists(self, path: str, ref: str | None = None) -> bool:
        """Check whether a file or directory exists."""
        ...

    async def create_or_update_file(self, path: str, options: CreateFileOptions) -> RepositoryFile:
        """Update ``path`` with its currently stored hash, or create it."""
        try:
            existing = await self.retrieve_file(path, options.branch)
        except RepositoryError as e:
            if e.code != StoreErrorCode.NOT_FOUND:
                raise
            logger.debug("[%s] %s not found, creating", self.name, path)
            return await self.create_file(path, options)

        return await self.update_file(
            path,
            UpdateFileOptions(
                message=options.message,
                content=options.content,
                sha=existing.sha,
                branch=options.branch,
                author=options.author,
                committer=options.committer,
            ),
        )

    async def close(self) -> None:
        """Release transport resources. No-op by default."""
        return None

    async def __aenter__(self) -> StoreRepository:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

"""Backend-agnostic store operations composed from the repository contract.

Application code talks to this class only. It performs no I/O of its own:
every read and write goes through the injected ``StoreRepository``.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
from collections import deque
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from .contracts import StoreRepository
from .errors import (
    PartialMoveError,
    RepositoryError,
    StoreErrorCode,
    StoreServiceError,
)
from .models import (
    DIRECTORY_MARKER,
    BatchFailure,
    BatchOperationResult,
    BatchSuccess,
    BatchSummary,
    CreateDirectoryOptions,
    CreateFileOptions,
    FileOperation,
    Identity,
    MatchedLine,
    ProjectStructure,
    RepositoryFile,
    RepositoryStats,
    SearchMatch,
    SearchOptions,
    SearchResult,
    UpdateFileOptions,
)
from .templates import render_template

logger = logging.getLogger(__name__)


@contextmanager
def _failure_as(code: StoreErrorCode, message: str, path: str | None = None) -> Iterator[None]:
    """Re-raise any failure inside the block as an operation-scoped error."""
    try:
        yield
    except Exception as e:
        raise StoreServiceError(message, code, path, e) from e


def describe_error(exc: BaseException) -> str:
    """One-line message for an error, including the underlying cause."""
    message = str(exc) or type(exc).__name__
    cause = getattr(exc, "cause", None)
    if cause is not None:
        message = f"{message}: {describe_error(cause)}"
    return message


def _join(base: str, path: str) -> str:
    return re.sub(r"/+", "/", f"{base}/{path}").lstrip("/")


def backup_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp safe for use as a path segment."""
    now = now or datetime.now(timezone.utc)
    iso = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


class StoreService:
    """High-level file operations over any ``StoreRepository``.

    Args:
        repository: the configured backend
    """

    def __init__(self, repository: StoreRepository) -> None:
        self._repo = repository

    @property
    def repository(self) -> StoreRepository:
        return self._repo

    # ── single-file operations ──

    async def create_file(
        self,
        path: str,
        content: str,
        message: str | None = None,
        *,
        branch: str | None = None,
        author: Identity | None = None,
        committer: Identity | None = None,
    ) -> RepositoryFile:
        options = CreateFileOptions(
            message=message or f"Create {path}",
            content=content,
            branch=branch,
            author=author,
            committer=committer,
        )
        with _failure_as(StoreErrorCode.CREATE_FILE_FAILED, f'Failed to create file "{path}"', path):
            return await self._repo.create_file(path, options)

    async def update_file(
        self,
        path: str,
        content: str,
        message: str | None = None,
        *,
        branch: str | None = None,
        author: Identity | None = None,
        committer: Identity | None = None,
    ) -> RepositoryFile:
        """Update ``path`` using the hash it currently has in the store."""
        with _failure_as(StoreErrorCode.UPDATE_FILE_FAILED, f'Failed to update file "{path}"', path):
            current = await self._repo.retrieve_file(path, branch)
            logger.debug("update %s from sha %s", path, current.sha)
            return await self._repo.update_file(
                path,
                UpdateFileOptions(
                    message=message or f"Update {path}",
                    content=content,
                    sha=current.sha,
                    branch=branch,
                    author=author,
                    committer=committer,
                ),
            )

    async def save_file(
        self,
        path: str,
        content: str,
        message: str | None = None,
        *,
        branch: str | None = None,
        author: Identity | None = None,
        committer: Identity | None = None,
    ) -> RepositoryFile:
        """Create ``path`` or update it if it already exists."""
        options = CreateFileOptions(
            message=message or f"Save {path}",
            content=content,
            branch=branch,
            author=author,
            committer=committer,
        )
        with _failure_as(StoreErrorCode.SAVE_FILE_FAILED, f'Failed to save file "{path}"', path):
            return await self._repo.create_or_update_file(path, options)

    async def delete_file(self, path: str, message: str | None = None, *, branch: str | None = None) -> None:
        with _failure_as(StoreErrorCode.DELETE_FILE_FAILED, f'Failed to delete file "{path}"', path):
            current = await self._repo.retrieve_file(path, branch)
            await self._repo.delete_file(path, message or f"Delete {path}", current.sha, branch)

    async def create_directory(
        self,
        path: str,
        message: str | None = None,
        init_files: Sequence[tuple[str, str]] | None = None,
    ) -> tuple[RepositoryFile, list[RepositoryFile]]:
        """Create a directory and optional ``(name, content)`` initialization files."""
        with _failure_as(StoreErrorCode.CREATE_DIRECTORY_FAILED, f'Failed to create directory "{path}"', path):
            directory = await self._repo.create_directory(
                path, CreateDirectoryOptions(message=message or f"Create directory {path}")
            )
            created: list[RepositoryFile] = []
            for name, content in init_files or ():
                created.append(await self.create_file(
                    _join(path, name), content, f"Initialize {name} in {path}"
                ))
            return directory, created

    async def copy_file(self, source: str, destination: str, message: str | None = None) -> RepositoryFile:
        failure = f'Failed to copy file from "{source}" to "{destination}"'
        with _failure_as(StoreErrorCode.COPY_FILE_FAILED, failure, source):
            source_file = await self._repo.retrieve_file(source)

        if not source_file.content:
            raise StoreServiceError(f'Source file "{source}" has no content', StoreErrorCode.NO_CONTENT, source)

        with _failure_as(StoreErrorCode.COPY_FILE_FAILED, failure, destination):
            return await self._repo.create_file(
                destination,
                CreateFileOptions(
                    message=message or f"Copy {source} to {destination}",
                    content=source_file.content,
                ),
            )

    async def move_file(self, source: str, destination: str, message: str | None = None) -> RepositoryFile:
        """Copy ``source`` to ``destination`` and delete the source.

        Raises:
            StoreServiceError: MOVE_FILE_FAILED if nothing was written
            PartialMoveError: the copy exists but the source could not be removed
        """
        try:
            moved = await self.copy_file(source, destination, message or f"Move {source} to {destination}")
        except StoreServiceError as e:
            raise StoreServiceError(
                f'Failed to move file from "{source}" to "{destination}"',
                StoreErrorCode.MOVE_FILE_FAILED,
                source,
                e,
            ) from e

        try:
            await self.delete_file(source, message or f"Remove {source} after move")
        except StoreServiceError as e:
            logger.warning("move %s -> %s left both copies: %s", source, destination, describe_error(e))
            raise PartialMoveError(source, destination, moved, e) from e
        return moved

    # ── batch ──

    async def batch_operations(
        self,
        operations: Sequence[FileOperation],
        concurrency: int = 1,
    ) -> BatchOperationResult:
        """Run create/update/delete requests, isolating each entry's failure.

        Entries run in input order. With ``concurrency > 1`` up to that many
        entries are in flight at once; the caller must not rely on ordering
        between entries in that mode. Results are always reported in input
        order.
        """
        outcomes: list[RepositoryFile | BaseException] = []

        if concurrency <= 1:
            for operation in operations:
                outcomes.append(await self._run_isolated(operation))
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def _bounded(operation: FileOperation) -> RepositoryFile | BaseException:
                async with semaphore:
                    return await self._run_isolated(operation)

            outcomes = list(await asyncio.gather(*(_bounded(op) for op in operations)))

        successful: list[BatchSuccess] = []
        failed: list[BatchFailure] = []
        for operation, outcome in zip(operations, outcomes):
            if isinstance(outcome, BaseException):
                failed.append(BatchFailure(path=operation.path, error=describe_error(outcome)))
            else:
                successful.append(BatchSuccess(path=operation.path, file=outcome))

        if failed:
            logger.info("batch finished with %d/%d failures", len(failed), len(operations))
        return BatchOperationResult(
            successful=tuple(successful),
            failed=tuple(failed),
            summary=BatchSummary(total=len(operations), successful=len(successful), failed=len(failed)),
        )

    async def _run_isolated(self, operation: FileOperation) -> RepositoryFile | Exception:
        try:
            return await self._execute(operation)
        except Exception as e:
            return e

    async def _execute(self, operation: FileOperation) -> RepositoryFile:
        if operation.type == "create":
            if operation.content is None:
                raise StoreServiceError(
                    "Content is required for create operations", StoreErrorCode.VALIDATION, operation.path
                )
            return await self.create_file(operation.path, operation.content, operation.message)

        if operation.type == "update":
            if operation.content is None:
                raise StoreServiceError(
                    "Content is required for update operations", StoreErrorCode.VALIDATION, operation.path
                )
            return await self.update_file(operation.path, operation.content, operation.message)

        if operation.type == "delete":
            await self.delete_file(operation.path, operation.message)
            return RepositoryFile(
                name=posixpath.basename(operation.path),
                path=operation.path,
                sha="",
                size=0,
                type="file",
            )

        raise StoreServiceError(
            f"Unknown operation type: {operation.type}", StoreErrorCode.VALIDATION, operation.path
        )

    # ── search ──

    async def search_files(self, search_term: str, options: SearchOptions | None = None) -> SearchResult:
        """Walk the tree and match files by name, or by content when requested.

        Without ``include_content`` only names are compared (case-insensitive
        substring) and no content is fetched. With it, every file passing the
        pattern/extension filters is read and scanned line by line.
        """
        options = options or SearchOptions()
        with _failure_as(StoreErrorCode.SEARCH_FAILED, f'Failed to search files with term "{search_term}"'):
            pattern = options.compiled_pattern()
            term = search_term.lower()
            result = SearchResult()

            async for item in self._walk_files(options.max_depth):
                if options.extension and not item.name.endswith(options.extension):
                    continue
                if pattern is not None and not pattern.search(item.name):
                    continue

                if not options.include_content:
                    if term in item.name.lower():
                        result.files.append(item)
                    continue

                try:
                    full = await self._repo.retrieve_file(item.path)
                except Exception as e:
                    logger.warning('Cannot read file "%s": %s', item.path, e)
                    continue
                result.files.append(full)

                matched = tuple(
                    MatchedLine(line_number=index, content=line.strip())
                    for index, line in enumerate((full.content or "").split("\n"), start=1)
                    if term in line.lower()
                )
                if matched:
                    result.matches.append(SearchMatch(file=full, matched_lines=matched))
            return result

    async def _walk_files(self, max_depth: int):
        """Yield file records breadth-first, descending at most ``max_depth`` levels."""
        queue: deque[tuple[str, int]] = deque([("", 0)])
        while queue:
            dir_path, depth = queue.popleft()
            try:
                items = await self._repo.list_directory(dir_path)
            except Exception as e:
                root_missing = isinstance(e, RepositoryError) and e.code == StoreErrorCode.NOT_FOUND
                if dir_path == "" and not root_missing:
                    raise
                logger.warning('Cannot read directory "%s": %s', dir_path, e)
                continue

            for item in items:
                if item.is_dir:
                    if depth < max_depth:
                        queue.append((item.path, depth + 1))
                else:
                    yield item

    # ── scaffolding ──

    async def create_project_structure(self, base_path: str, structure: ProjectStructure) -> BatchOperationResult:
        """Create directory markers and templated files under ``base_path`` in one batch."""
        operations: list[FileOperation] = []
        for dir_path in structure.directories:
            operations.append(FileOperation(
                type="create",
                path=_join(_join(base_path, dir_path), DIRECTORY_MARKER),
                content="",
                message=f"Create directory {dir_path}",
            ))
        for file_path in structure.files:
            operations.append(FileOperation(
                type="create",
                path=_join(base_path, file_path),
                content=render_template(file_path, structure.template),
                message=f"Create {file_path}",
            ))
        return await self.batch_operations(operations)

    # ── maintenance ──

    async def get_stats(self) -> RepositoryStats:
        """Aggregate file/directory counts, bytes and an extension histogram."""
        with _failure_as(StoreErrorCode.STATS_FAILED, "Failed to get repository statistics"):
            stats = RepositoryStats()
            stack = [""]
            while stack:
                dir_path = stack.pop()
                try:
                    items = await self._repo.list_directory(dir_path)
                except Exception as e:
                    logger.warning('Cannot read directory "%s": %s', dir_path, e)
                    continue
                for item in items:
                    if item.is_dir:
                        stats.total_directories += 1
                        stack.append(item.path)
                    elif item.name != DIRECTORY_MARKER:
                        stats.total_files += 1
                        stats.total_size += item.size
                        ext = posixpath.splitext(item.name)[1][1:].lower() or "no-extension"
                        stats.file_types[ext] = stats.file_types.get(ext, 0) + 1
            return stats

    async def backup(
        self,
        pattern: re.Pattern[str] | str,
        backup_path: str = "backups",
        now: datetime | None = None,
    ) -> BatchOperationResult:
        """Snapshot every file whose name matches ``pattern`` under ``backup_path/<timestamp>/``."""
        with _failure_as(StoreErrorCode.BACKUP_FAILED, f'Failed to backup files with pattern "{pattern}"'):
            found = await self.search_files("", SearchOptions(pattern=pattern, include_content=True))
            snapshot_root = _join(backup_path, backup_timestamp(now))
            backup_prefix = backup_path.strip("/") + "/"

            operations = [
                FileOperation(
                    type="create",
                    path=_join(snapshot_root, file.path),
                    content=file.content,
                    message=f"Backup {file.path}",
                )
                for file in found.files
                # earlier snapshots are not backed up again
                if file.content is not None and not file.path.startswith(backup_prefix)
            ]
            logger.info("backing up %d files to %s", len(operations), snapshot_root)
            return await self.batch_operations(operations)

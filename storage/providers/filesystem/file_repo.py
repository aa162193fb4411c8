"""Local filesystem repository confined to a data directory.

Version tracking is emulated with JSON sidecars under
``<root>/.metadata/<escaped-path>.meta.json``. A sidecar is advisory: the
content hash is always recomputable from the file itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
import uuid
import weakref
from pathlib import Path, PurePosixPath
from typing import Any, Callable
from urllib.parse import quote

from storage.config import FileSystemConfig
from storage.contracts import StoreRepository
from storage.errors import FileSystemRepositoryError, StoreErrorCode
from storage.hashing import EMPTY_BLOB_SHA, blob_sha
from storage.models import (
    DIRECTORY_MARKER,
    CreateDirectoryOptions,
    CreateFileOptions,
    FileMetadata,
    Identity,
    RepositoryFile,
    RepositoryStats,
    UpdateFileOptions,
)

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".tmp"


def _atomic_write_text(target: Path, text: str) -> None:
    tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}{_TMP_SUFFIX}")
    try:
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _spawn(fn: Callable[..., Any], *args: Any) -> asyncio.Future:
    task = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    task.add_done_callback(_observe)
    return task


def _observe(task: asyncio.Future) -> None:
    # a worker abandoned after a timeout still has its outcome retrieved
    if not task.cancelled():
        task.exception()


class FileSystemRepository(StoreRepository):
    """Repository backed by a sandboxed local directory.

    Args:
        config: FileSystemConfig with the data directory and timeouts
    """

    name = "filesystem"

    def __init__(self, config: FileSystemConfig | None = None) -> None:
        self._config = config or FileSystemConfig()
        self._root = Path(self._config.data_directory).resolve()
        self._metadata_dir = self._root / self._config.metadata_dir_name
        self._initialized = False
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        logger.info("[filesystem] repository rooted at %s", self._root)

    @property
    def data_directory(self) -> Path:
        """Resolved absolute root of the repository."""
        return self._root

    # ── lifecycle ──

    async def initialize(self) -> None:
        """Create the root and metadata directories. Idempotent."""
        if self._initialized:
            return
        await self._run(self._initialize_sync)
        self._initialized = True

    def _initialize_sync(self) -> None:
        if not self._config.create_if_not_exists:
            if not self._root.is_dir():
                raise FileSystemRepositoryError(
                    f"Data directory does not exist: {self._root}", StoreErrorCode.INIT_ERROR
                )
            self._metadata_dir.mkdir(exist_ok=True)
            return
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            self._metadata_dir.mkdir(exist_ok=True)
        except OSError as e:
            raise FileSystemRepositoryError(
                f"Failed to initialize repository: {e}", StoreErrorCode.INIT_ERROR
            ) from e

    async def cleanup(self) -> None:
        """Remove the data directory with all content and metadata."""
        try:
            await self._run(self._cleanup_sync)
        finally:
            self._initialized = False

    def _cleanup_sync(self) -> None:
        try:
            shutil.rmtree(self._root)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise FileSystemRepositoryError(
                f"Failed to cleanup repository: {e}", StoreErrorCode.CLEANUP_FAILED
            ) from e

    # ── path handling ──

    def resolve_path(self, path: str) -> Path:
        """Map a repository path onto the data directory.

        Raises:
            FileSystemRepositoryError: PATH_OUTSIDE_BOUNDS if the canonical
                path is not the root or below it, or lands in the metadata tree
        """
        normalized = os.path.normpath(path or ".").replace("\\", "/")
        clean = normalized.lstrip("/") or "."
        resolved = (self._root / clean).resolve()

        if resolved != self._root and self._root not in resolved.parents:
            raise FileSystemRepositoryError(
                f'Path "{path}" is outside the constrained data directory',
                StoreErrorCode.PATH_OUTSIDE_BOUNDS,
                path,
            )
        if resolved == self._metadata_dir or self._metadata_dir in resolved.parents:
            raise FileSystemRepositoryError(
                f'Path "{path}" points into the metadata directory',
                StoreErrorCode.PATH_OUTSIDE_BOUNDS,
                path,
            )
        return resolved

    def _inside_root(self, entry: Path) -> bool:
        """Whether ``entry`` (following symlinks) still lands inside the root."""
        try:
            resolved = entry.resolve()
        except OSError:
            return False
        return resolved == self._root or self._root in resolved.parents

    def _relative(self, full: Path) -> str:
        rel = full.relative_to(self._root).as_posix()
        return "" if rel == "." else rel

    def _metadata_path(self, full: Path) -> Path:
        # percent-encoding is injective, so "a/b_c" and "a_b/c" never share a sidecar
        escaped = quote(self._relative(full), safe="")
        return self._metadata_dir / f"{escaped}.meta.json"

    # ── metadata ──

    def _save_metadata(self, full: Path, metadata: FileMetadata) -> None:
        self._metadata_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write_text(self._metadata_path(full), json.dumps(metadata.to_dict(), indent=2))

    def _load_metadata(self, full: Path) -> FileMetadata | None:
        try:
            raw = self._metadata_path(full).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return FileMetadata.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("[filesystem] ignoring unreadable metadata for %s: %s", full, e)
            return None

    def _current_sha(self, full: Path, content: bytes) -> str:
        """Hash of the stored content; a stale sidecar never wins over live bytes."""
        live = blob_sha(content)
        metadata = self._load_metadata(full)
        if metadata is not None and metadata.sha != live:
            logger.warning("[filesystem] stale metadata for %s, using live hash", self._relative(full))
        return live

    @staticmethod
    def _new_metadata(sha: str, message: str, author: Identity | None, committer: Identity | None) -> FileMetadata:
        return FileMetadata(
            sha=sha,
            message=message,
            timestamp=int(time.time() * 1000),
            author=author,
            committer=committer,
        )

    # ── helpers ──

    async def _run(self, fn: Callable[..., Any], *args: Any, path: str | None = None) -> Any:
        """Run blocking ``fn`` in a worker thread, bounded by the configured timeout."""
        return await self._await_worker(_spawn(fn, *args), path)

    async def _run_locked(self, full: Path, fn: Callable[..., Any], *args: Any, path: str | None = None) -> Any:
        """Like ``_run`` but holds the per-path lock for the whole life of the thread.

        A timeout stops the caller from waiting, not the thread; the path stays
        locked until the thread is done, so the next writer never overlaps it.
        """
        lock = self._lock_for(full)
        await lock.acquire()
        task = _spawn(fn, *args)
        task.add_done_callback(lambda _: lock.release())
        return await self._await_worker(task, path)

    async def _await_worker(self, task: asyncio.Future, path: str | None) -> Any:
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._config.timeout)
        except FileSystemRepositoryError:
            raise
        except asyncio.TimeoutError as e:
            if not task.done():
                raise FileSystemRepositoryError(
                    f"Filesystem operation timed out after {self._config.timeout}s",
                    StoreErrorCode.TIMEOUT,
                    path,
                ) from e
            raise FileSystemRepositoryError(f"Filesystem error: {e}", StoreErrorCode.IO_ERROR, path) from e
        except UnicodeDecodeError as e:
            raise FileSystemRepositoryError(
                f'File "{path}" is not valid UTF-8 text', StoreErrorCode.IO_ERROR, path
            ) from e
        except OSError as e:
            raise FileSystemRepositoryError(f"Filesystem error: {e}", StoreErrorCode.IO_ERROR, path) from e

    def _lock_for(self, full: Path) -> asyncio.Lock:
        key = str(full)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def _file_record(path: str, sha: str, size: int, content: str | None = None) -> RepositoryFile:
        return RepositoryFile(
            name=PurePosixPath(path).name,
            path=path,
            sha=sha,
            size=size,
            type="file",
            content=content,
            encoding="utf-8" if content is not None else None,
        )

    # ── contract ──

    async def create_file(self, path: str, options: CreateFileOptions) -> RepositoryFile:
        await self.initialize()
        full = self.resolve_path(path)
        return await self._run_locked(full, self._create_file_sync, path, full, options, path=path)

    def _create_file_sync(self, path: str, full: Path, options: CreateFileOptions) -> RepositoryFile:
        if full.is_dir():
            raise FileSystemRepositoryError(
                f'Path "{path}" is a directory', StoreErrorCode.ALREADY_EXISTS, path
            )
        self._make_parents(path, full.parent)
        data = options.content.encode("utf-8")
        try:
            # exclusive create: two concurrent creators cannot both succeed
            with open(full, "xb") as f:
                f.write(data)
        except FileExistsError:
            raise FileSystemRepositoryError(
                f'File "{path}" already exists', StoreErrorCode.ALREADY_EXISTS, path
            ) from None

        sha = blob_sha(options.content)
        self._save_metadata(full, self._new_metadata(sha, options.message, options.author, options.committer))
        logger.debug("[filesystem] created %s (%s)", path, sha[:8])
        return self._file_record(path, sha, len(data), options.content)

    async def update_file(self, path: str, options: UpdateFileOptions) -> RepositoryFile:
        await self.initialize()
        full = self.resolve_path(path)
        return await self._run_locked(full, self._update_file_sync, path, full, options, path=path)

    def _update_file_sync(self, path: str, full: Path, options: UpdateFileOptions) -> RepositoryFile:
        current = self._read_existing(path, full)
        current_sha = self._current_sha(full, current)
        if current_sha != options.sha:
            raise FileSystemRepositoryError(
                f'SHA mismatch for file "{path}". Expected: {options.sha}, Current: {current_sha}',
                StoreErrorCode.CONFLICT,
                path,
            )

        _atomic_write_text(full, options.content)
        sha = blob_sha(options.content)
        self._save_metadata(full, self._new_metadata(sha, options.message, options.author, options.committer))
        logger.debug("[filesystem] updated %s (%s -> %s)", path, current_sha[:8], sha[:8])
        return self._file_record(path, sha, len(options.content.encode("utf-8")), options.content)

    @staticmethod
    def _make_parents(path: str, directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError):
            raise FileSystemRepositoryError(
                f'A parent of "{path}" is a file, not a directory', StoreErrorCode.IS_FILE, path
            ) from None

    def _read_existing(self, path: str, full: Path) -> bytes:
        if full.is_dir():
            raise FileSystemRepositoryError(
                f'Path "{path}" is a directory, not a file', StoreErrorCode.IS_DIRECTORY, path
            )
        try:
            return full.read_bytes()
        except (FileNotFoundError, NotADirectoryError):
            # a file in the middle of the path means the target cannot exist
            raise FileSystemRepositoryError(
                f'File "{path}" not found', StoreErrorCode.NOT_FOUND, path
            ) from None

    async def retrieve_file(self, path: str, ref: str | None = None) -> RepositoryFile:
        # ref is accepted for contract parity; the local store keeps one version
        await self.initialize()
        full = self.resolve_path(path)
        return await self._run(self._retrieve_file_sync, path, full, path=path)

    def _retrieve_file_sync(self, path: str, full: Path) -> RepositoryFile:
        data = self._read_existing(path, full)
        content = data.decode("utf-8")
        return self._file_record(path, self._current_sha(full, data), len(data), content)

    async def delete_file(self, path: str, message: str, sha: str, branch: str | None = None) -> None:
        await self.initialize()
        full = self.resolve_path(path)
        await self._run_locked(full, self._delete_file_sync, path, full, sha, path=path)

    def _delete_file_sync(self, path: str, full: Path, sha: str) -> None:
        current_sha = self._current_sha(full, self._read_existing(path, full))
        if current_sha != sha:
            raise FileSystemRepositoryError(
                f'SHA mismatch for file "{path}". Expected: {sha}, Current: {current_sha}',
                StoreErrorCode.CONFLICT,
                path,
            )
        try:
            full.unlink()
        except FileNotFoundError:
            raise FileSystemRepositoryError(
                f'File "{path}" not found', StoreErrorCode.NOT_FOUND, path
            ) from None

        try:
            self._metadata_path(full).unlink(missing_ok=True)
        except OSError as e:
            logger.warning('[filesystem] failed to delete metadata for "%s": %s', path, e)
        logger.debug("[filesystem] deleted %s", path)

    async def create_directory(self, path: str, options: CreateDirectoryOptions) -> RepositoryFile:
        await self.initialize()
        full = self.resolve_path(path)
        return await self._run(self._create_directory_sync, path, full, options, path=path)

    def _create_directory_sync(self, path: str, full: Path, options: CreateDirectoryOptions) -> RepositoryFile:
        if full.is_file():
            raise FileSystemRepositoryError(
                f'Path "{path}" is a file, not a directory', StoreErrorCode.IS_FILE, path
            )
        self._make_parents(path, full)
        marker = full / DIRECTORY_MARKER
        try:
            with open(marker, "x", encoding="utf-8"):
                pass
        except FileExistsError:
            pass

        self._save_metadata(full, self._new_metadata(EMPTY_BLOB_SHA, options.message, options.author, options.committer))
        return RepositoryFile(
            name=PurePosixPath(self._relative(full)).name,
            path=path,
            sha=EMPTY_BLOB_SHA,
            size=0,
            type="dir",
        )

    async def list_directory(self, path: str = "", ref: str | None = None) -> list[RepositoryFile]:
        await self.initialize()
        full = self.resolve_path(path)
        return await self._run(self._list_directory_sync, path, full, path=path)

    def _list_directory_sync(self, path: str, full: Path) -> list[RepositoryFile]:
        if not full.exists():
            raise FileSystemRepositoryError(
                f'Directory "{path}" not found', StoreErrorCode.NOT_FOUND, path
            )
        if not full.is_dir():
            raise FileSystemRepositoryError(
                f'Path "{path}" is a file, not a directory', StoreErrorCode.IS_FILE, path
            )

        base = path.strip("/")
        results: list[RepositoryFile] = []
        for entry in sorted(full.iterdir(), key=lambda p: p.name):
            # hidden entries (metadata dir, temp files) are skipped; the marker is kept
            if entry.name.startswith(".") and entry.name != DIRECTORY_MARKER:
                continue
            if entry.is_symlink() and not self._inside_root(entry):
                logger.debug("[filesystem] skipping symlink leaving the root: %s", entry)
                continue
            entry_path = f"{base}/{entry.name}" if base else entry.name
            if entry.is_dir():
                metadata = self._load_metadata(entry)
                results.append(RepositoryFile(
                    name=entry.name,
                    path=entry_path,
                    sha=metadata.sha if metadata else EMPTY_BLOB_SHA,
                    size=0,
                    type="dir",
                ))
            elif entry.is_file():
                data = entry.read_bytes()
                results.append(self._file_record(entry_path, blob_sha(data), len(data)))
        return results

    async def exists(self, path: str, ref: str | None = None) -> bool:
        full = self.resolve_path(path)
        return await self._run(full.exists, path=path)

    # ── maintenance ──

    async def get_stats(self) -> RepositoryStats:
        """Count files, directories and bytes below the root, skipping metadata."""
        await self.initialize()
        return await self._run(self._get_stats_sync)

    def _get_stats_sync(self) -> RepositoryStats:
        stats = RepositoryStats()
        stack = [self._root]
        while stack:
            current = stack.pop()
            try:
                entries = list(current.iterdir())
            except OSError as e:
                logger.warning('[filesystem] failed to read directory "%s": %s', current, e)
                continue
            for entry in entries:
                if entry == self._metadata_dir or entry.name.endswith(_TMP_SUFFIX):
                    continue
                if entry.is_symlink() and not self._inside_root(entry):
                    continue
                if entry.is_dir():
                    stats.total_directories += 1
                    # a linked directory inside the root is counted once, never walked twice
                    if not entry.is_symlink():
                        stack.append(entry)
                elif entry.is_file() and entry.name != DIRECTORY_MARKER:
                    stats.total_files += 1
                    stats.total_size += entry.stat().st_size
                    ext = entry.suffix[1:].lower() if entry.suffix else "no-extension"
                    stats.file_types[ext] = stats.file_types.get(ext, 0) + 1
        return stats

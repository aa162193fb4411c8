from __future__ import annotations

import asyncio
import json
import threading
from pathlib import Path

import pytest

from storage.config import FileSystemConfig
from storage.errors import FileSystemRepositoryError, StoreErrorCode
from storage.hashing import EMPTY_BLOB_SHA, blob_sha
from storage.models import CreateDirectoryOptions, CreateFileOptions, Identity, UpdateFileOptions
from storage.providers.filesystem import FileSystemRepository


def _create(content: str, message: str = "create") -> CreateFileOptions:
    return CreateFileOptions(message=message, content=content)


@pytest.mark.parametrize(
    "path",
    ["../../etc/passwd", "../outside.txt", "a/../../outside.txt", "a/b/../../../x"],
)
def test_resolve_path_rejects_escapes(fs_repo: FileSystemRepository, path: str) -> None:
    with pytest.raises(FileSystemRepositoryError) as exc_info:
        fs_repo.resolve_path(path)
    assert exc_info.value.code == StoreErrorCode.PATH_OUTSIDE_BOUNDS
    assert exc_info.value.path == path


def test_resolve_path_keeps_absolute_looking_paths_inside_root(fs_repo: FileSystemRepository) -> None:
    root = fs_repo.data_directory
    assert fs_repo.resolve_path("/etc/passwd") == root / "etc" / "passwd"
    assert fs_repo.resolve_path("a/./b/../c.txt") == root / "a" / "c.txt"
    assert fs_repo.resolve_path("") == root


def test_resolve_path_rejects_metadata_directory(fs_repo: FileSystemRepository) -> None:
    with pytest.raises(FileSystemRepositoryError) as exc_info:
        fs_repo.resolve_path(".metadata/x.meta.json")
    assert exc_info.value.code == StoreErrorCode.PATH_OUTSIDE_BOUNDS


def test_data_directory_is_absolute(tmp_path: Path) -> None:
    repo = FileSystemRepository(FileSystemConfig(data_directory=str(tmp_path / "x" / ".." / "data")))
    assert repo.data_directory == (tmp_path / "data").resolve()
    assert repo.data_directory.is_absolute()


@pytest.mark.asyncio
async def test_traversal_never_touches_storage_outside_root(tmp_path: Path) -> None:
    repo = FileSystemRepository(FileSystemConfig(data_directory=str(tmp_path / "root" / "data")))

    with pytest.raises(FileSystemRepositoryError):
        await repo.create_file("../escaped.txt", _create("nope"))

    assert not (tmp_path / "root" / "escaped.txt").exists()


@pytest.mark.asyncio
async def test_create_writes_sidecar_metadata(fs_repo: FileSystemRepository) -> None:
    author = Identity(name="Ada", email="ada@example.com")
    await fs_repo.create_file(
        "quiz/math.json",
        CreateFileOptions(message="add quiz", content="{}", author=author),
    )

    sidecar = fs_repo.data_directory / ".metadata" / "quiz%2Fmath.json.meta.json"
    payload = json.loads(sidecar.read_text(encoding="utf-8"))
    assert payload["sha"] == blob_sha("{}")
    assert payload["message"] == "add quiz"
    assert payload["author"] == {"name": "Ada", "email": "ada@example.com"}
    assert isinstance(payload["timestamp"], int)


@pytest.mark.asyncio
async def test_sidecar_names_do_not_collide(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_file("a/b_c", _create("one"))
    await fs_repo.create_file("a_b/c", _create("two"))

    sidecars = sorted(p.name for p in (fs_repo.data_directory / ".metadata").iterdir())
    assert len(sidecars) == 2


@pytest.mark.asyncio
async def test_missing_sidecar_falls_back_to_live_hash(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_file("plain.txt", _create("content"))
    for sidecar in (fs_repo.data_directory / ".metadata").iterdir():
        sidecar.unlink()

    fetched = await fs_repo.retrieve_file("plain.txt")
    assert fetched.sha == blob_sha("content")

    updated = await fs_repo.update_file(
        "plain.txt", UpdateFileOptions(message="edit", content="new", sha=fetched.sha)
    )
    assert updated.sha == blob_sha("new")


@pytest.mark.asyncio
async def test_out_of_band_edit_is_hashed_from_live_content(fs_repo: FileSystemRepository) -> None:
    created = await fs_repo.create_file("edited.txt", _create("before"))
    (fs_repo.data_directory / "edited.txt").write_text("after", encoding="utf-8")

    fetched = await fs_repo.retrieve_file("edited.txt")
    assert fetched.sha == blob_sha("after")
    assert fetched.size == len(b"after")

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await fs_repo.update_file("edited.txt", UpdateFileOptions(message="m", content="x", sha=created.sha))
    assert exc_info.value.code == StoreErrorCode.CONFLICT


@pytest.mark.asyncio
async def test_delete_removes_content_and_sidecar(fs_repo: FileSystemRepository) -> None:
    created = await fs_repo.create_file("tmp/file.txt", _create("x"))
    await fs_repo.delete_file("tmp/file.txt", "remove", created.sha)

    assert not (fs_repo.data_directory / "tmp" / "file.txt").exists()
    assert not (fs_repo.data_directory / ".metadata" / "tmp%2Ffile.txt.meta.json").exists()


@pytest.mark.asyncio
async def test_delete_missing_file_fails_not_found(fs_repo: FileSystemRepository) -> None:
    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await fs_repo.delete_file("nothing.txt", "remove", EMPTY_BLOB_SHA)
    assert exc_info.value.code == StoreErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_list_directory_skips_hidden_entries_but_keeps_marker(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_directory("box", CreateDirectoryOptions(message="mkdir"))
    await fs_repo.create_file("box/visible.txt", _create("v"))
    (fs_repo.data_directory / "box" / ".hidden").write_text("h", encoding="utf-8")

    names = [item.name for item in await fs_repo.list_directory("box")]
    root_names = [item.name for item in await fs_repo.list_directory()]

    assert names == [".gitkeep", "visible.txt"]
    assert ".metadata" not in root_names
    assert root_names == ["box"]


@pytest.mark.asyncio
async def test_list_missing_directory_fails_not_found(fs_repo: FileSystemRepository) -> None:
    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await fs_repo.list_directory("nowhere")
    assert exc_info.value.code == StoreErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_creates_of_same_path_have_one_winner(fs_repo: FileSystemRepository) -> None:
    results = await asyncio.gather(
        fs_repo.create_file("race.txt", _create("first")),
        fs_repo.create_file("race.txt", _create("second")),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(errors) == 1
    assert errors[0].code == StoreErrorCode.ALREADY_EXISTS
    assert (await fs_repo.retrieve_file("race.txt")).content == winners[0].content


@pytest.mark.asyncio
async def test_concurrent_updates_with_same_hash_have_one_winner(fs_repo: FileSystemRepository) -> None:
    created = await fs_repo.create_file("counter.txt", _create("0"))

    results = await asyncio.gather(
        fs_repo.update_file("counter.txt", UpdateFileOptions(message="a", content="1", sha=created.sha)),
        fs_repo.update_file("counter.txt", UpdateFileOptions(message="b", content="2", sha=created.sha)),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert errors[0].code == StoreErrorCode.CONFLICT


@pytest.mark.asyncio
async def test_get_stats_excludes_metadata_and_markers(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_directory("docs", CreateDirectoryOptions(message="mkdir"))
    await fs_repo.create_file("docs/a.md", _create("# a"))
    await fs_repo.create_file("docs/b.json", _create("{}"))
    await fs_repo.create_file("root.txt", _create("1234"))

    stats = await fs_repo.get_stats()

    assert stats.total_files == 3
    assert stats.total_directories == 1
    assert stats.total_size == len("# a") + len("{}") + len("1234")
    assert stats.file_types == {"md": 1, "json": 1, "txt": 1}


@pytest.mark.asyncio
async def test_initialize_is_idempotent_and_cleanup_removes_root(fs_repo: FileSystemRepository) -> None:
    await fs_repo.initialize()
    await fs_repo.initialize()
    assert (fs_repo.data_directory / ".metadata").is_dir()

    await fs_repo.create_file("x.txt", _create("x"))
    await fs_repo.cleanup()
    assert not fs_repo.data_directory.exists()

    await fs_repo.cleanup()
    assert await fs_repo.exists("x.txt") is False


@pytest.mark.asyncio
async def test_initialize_without_create_requires_existing_root(tmp_path: Path) -> None:
    repo = FileSystemRepository(
        FileSystemConfig(data_directory=str(tmp_path / "absent"), create_if_not_exists=False)
    )

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await repo.initialize()
    assert exc_info.value.code == StoreErrorCode.INIT_ERROR


@pytest.mark.asyncio
async def test_create_file_over_directory_is_rejected(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_directory("taken", CreateDirectoryOptions(message="mkdir"))

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await fs_repo.create_file("taken", _create("x"))
    assert exc_info.value.code == StoreErrorCode.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_writes_below_a_file_fail_is_file(fs_repo: FileSystemRepository) -> None:
    await fs_repo.create_file("a.txt", _create("x"))

    for call in (
        lambda: fs_repo.create_file("a.txt/child", _create("y")),
        lambda: fs_repo.create_file("a.txt/deeper/child", _create("y")),
        lambda: fs_repo.create_directory("a.txt/sub", CreateDirectoryOptions(message="mkdir")),
        lambda: fs_repo.create_or_update_file("a.txt/child", _create("y")),
    ):
        with pytest.raises(FileSystemRepositoryError) as exc_info:
            await call()
        assert exc_info.value.code == StoreErrorCode.IS_FILE

    assert (await fs_repo.retrieve_file("a.txt")).content == "x"


@pytest.mark.asyncio
async def test_non_utf8_content_raises_typed_error(fs_repo: FileSystemRepository) -> None:
    await fs_repo.initialize()
    (fs_repo.data_directory / "binary.bin").write_bytes(b"\xff\xfe\x00")

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await fs_repo.retrieve_file("binary.bin")

    assert exc_info.value.code == StoreErrorCode.IO_ERROR
    assert exc_info.value.path == "binary.bin"
    assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)


@pytest.mark.asyncio
async def test_timed_out_write_keeps_path_locked_until_it_finishes(tmp_path: Path, monkeypatch) -> None:
    repo = FileSystemRepository(FileSystemConfig(data_directory=str(tmp_path / "data"), timeout=0.2))
    created = await repo.create_file("a.txt", _create("x"))
    release = threading.Event()

    def stuck_update(path, full, options):
        release.wait(5)

    monkeypatch.setattr(repo, "_update_file_sync", stuck_update)

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await repo.update_file("a.txt", UpdateFileOptions(message="m", content="y", sha=created.sha))
    assert exc_info.value.code == StoreErrorCode.TIMEOUT

    follower = asyncio.create_task(repo.delete_file("a.txt", "remove", created.sha))
    await asyncio.sleep(0.3)
    assert not follower.done()

    release.set()
    await asyncio.wait_for(follower, timeout=5)
    assert await repo.exists("a.txt") is False


@pytest.mark.asyncio
async def test_symlinks_leaving_the_root_are_not_listed_or_counted(tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("top secret", encoding="utf-8")
    repo = FileSystemRepository(FileSystemConfig(data_directory=str(tmp_path / "data")))
    await repo.create_file("inside.txt", _create("ok"))
    (repo.data_directory / "leak.txt").symlink_to(outside / "secret.txt")
    (repo.data_directory / "out").symlink_to(outside, target_is_directory=True)

    names = [item.name for item in await repo.list_directory()]
    stats = await repo.get_stats()

    assert names == ["inside.txt"]
    assert stats.total_files == 1
    assert stats.total_directories == 0
    assert stats.total_size == len("ok")

    with pytest.raises(FileSystemRepositoryError) as exc_info:
        await repo.retrieve_file("leak.txt")
    assert exc_info.value.code == StoreErrorCode.PATH_OUTSIDE_BOUNDS

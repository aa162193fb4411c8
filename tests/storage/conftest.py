"""Shared fixtures for store tests."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from storage.config import FileSystemConfig, GitHubConfig
from storage.providers.filesystem import FileSystemRepository
from storage.providers.github import GitHubRepository
from tests.fakes.github import FakeGitHub


@pytest.fixture
def fs_repo(tmp_path: Path) -> FileSystemRepository:
    return FileSystemRepository(FileSystemConfig(data_directory=str(tmp_path / "data")))


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub(owner="acme", repo="data")


@pytest.fixture
def github_config() -> GitHubConfig:
    return GitHubConfig(owner="acme", repo="data", token="ghp_test", base_dir="quiz")


@pytest.fixture
def gh_repo(fake_github: FakeGitHub, github_config: GitHubConfig) -> GitHubRepository:
    client = httpx.AsyncClient(
        base_url="https://api.github.test",
        transport=httpx.MockTransport(fake_github.handler),
    )
    return GitHubRepository(github_config, client=client)


@pytest.fixture(params=["filesystem", "github"])
def any_repo(request: pytest.FixtureRequest, fs_repo: FileSystemRepository, gh_repo: GitHubRepository):
    """Each contract test runs once per backend."""
    return fs_repo if request.param == "filesystem" else gh_repo

"""Store configuration.

Backend priority: --backend <name> > STORE_BACKEND env > "filesystem" (default)
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

StoreBackend = Literal["filesystem", "github"]


class FileSystemConfig(BaseModel):
    data_directory: str = "./data"
    create_if_not_exists: bool = True
    metadata_dir_name: str = ".metadata"
    timeout: float = 30.0

    @field_validator("metadata_dir_name")
    @classmethod
    def _metadata_dir_is_hidden(cls, value: str) -> str:
        if not value.startswith(".") or "/" in value or "\\" in value:
            raise ValueError("metadata_dir_name must be a single hidden directory name")
        return value


class GitHubConfig(BaseModel):
    owner: str
    repo: str
    token: str
    base_dir: str = ""
    base_url: str = "https://api.github.com"
    branch: str = "main"
    user_agent: str = "storage-client"
    timeout: float = 30.0

    @field_validator("token")
    @classmethod
    def _token_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("GitHub token is required")
        return value.strip()

    @field_validator("base_dir")
    @classmethod
    def _strip_base_dir(cls, value: str) -> str:
        return value.strip("/")

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.rstrip("/")


class StoreConfig(BaseModel):
    backend: StoreBackend = "filesystem"
    filesystem: FileSystemConfig = Field(default_factory=FileSystemConfig)
    github: GitHubConfig | None = None

    @model_validator(mode="after")
    def _github_section_present(self) -> StoreConfig:
        if self.backend == "github" and self.github is None:
            raise ValueError("backend 'github' requires a github section")
        return self

    @classmethod
    def load(cls, path: str | Path) -> StoreConfig:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Store config not found: {path}")
        data = json.loads(path.read_text(encoding="utf-8"))
        github = data.get("github")
        if isinstance(github, dict) and not github.get("token"):
            github["token"] = os.getenv("GH_PAT") or os.getenv("GITHUB_TOKEN", "")
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, backend: str | None = None) -> StoreConfig:
        """Build a config from environment variables.

        STORE_DATA_DIR, GH_PAT / GITHUB_TOKEN, STORE_GITHUB_OWNER,
        STORE_GITHUB_REPO, STORE_GITHUB_BASE_DIR, STORE_GITHUB_BRANCH.
        """
        name = resolve_store_backend(backend)
        filesystem = FileSystemConfig(data_directory=os.getenv("STORE_DATA_DIR", "./data"))
        github = None
        if name == "github":
            github = GitHubConfig(
                owner=os.getenv("STORE_GITHUB_OWNER", ""),
                repo=os.getenv("STORE_GITHUB_REPO", ""),
                token=os.getenv("GH_PAT") or os.getenv("GITHUB_TOKEN", ""),
                base_dir=os.getenv("STORE_GITHUB_BASE_DIR", ""),
                branch=os.getenv("STORE_GITHUB_BRANCH", "main"),
            )
        return cls(backend=name, filesystem=filesystem, github=github)

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(exclude_none=True)
        # never persist credentials
        if "github" in data:
            data["github"].pop("token", None)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path


def resolve_store_backend(cli_arg: str | None) -> str:
    if cli_arg:
        return cli_arg
    return os.getenv("STORE_BACKEND", "filesystem")

"""Shared storage domain models: backend-neutral data types."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

FileType = Literal["file", "dir"]
OperationType = Literal["create", "update", "delete"]
TreeMode = Literal["100644", "100755", "040000", "160000", "120000"]

DIRECTORY_MARKER = ".gitkeep"


@dataclass(frozen=True)
class Identity:
    name: str
    email: str


@dataclass
class RepositoryFile:
    """A file or directory as observed by a backend for one call."""

    name: str
    path: str
    sha: str
    size: int
    type: FileType
    content: str | None = None
    encoding: str | None = None

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class FileMetadata:
    """Sidecar record kept next to locally stored content."""

    sha: str
    message: str
    timestamp: int  # epoch milliseconds
    author: Identity | None = None
    committer: Identity | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileMetadata:
        author = data.get("author")
        committer = data.get("committer")
        return cls(
            sha=data["sha"],
            message=data.get("message", ""),
            timestamp=int(data.get("timestamp", 0)),
            author=Identity(**author) if author else None,
            committer=Identity(**committer) if committer else None,
        )


@dataclass
class CreateDirectoryOptions:
    message: str
    branch: str | None = None
    author: Identity | None = None
    committer: Identity | None = None


@dataclass
class CreateFileOptions:
    message: str
    content: str
    branch: str | None = None
    author: Identity | None = None
    committer: Identity | None = None


@dataclass
class UpdateFileOptions:
    message: str
    content: str
    sha: str
    branch: str | None = None
    author: Identity | None = None
    committer: Identity | None = None


@dataclass
class FileOperation:
    type: OperationType
    path: str
    content: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class BatchFailure:
    path: str
    error: str


@dataclass(frozen=True)
class BatchSuccess:
    path: str
    file: RepositoryFile


@dataclass(frozen=True)
class BatchSummary:
    total: int
    successful: int
    failed: int


@dataclass(frozen=True)
class BatchOperationResult:
    successful: tuple[BatchSuccess, ...]
    failed: tuple[BatchFailure, ...]
    summary: BatchSummary


@dataclass
class SearchOptions:
    pattern: re.Pattern[str] | str | None = None
    extension: str | None = None
    max_depth: int = 10
    include_content: bool = False

    def compiled_pattern(self) -> re.Pattern[str] | None:
        if self.pattern is None or isinstance(self.pattern, re.Pattern):
            return self.pattern
        return re.compile(self.pattern)


@dataclass(frozen=True)
class MatchedLine:
    line_number: int
    content: str


@dataclass(frozen=True)
class SearchMatch:
    file: RepositoryFile
    matched_lines: tuple[MatchedLine, ...]


@dataclass
class SearchResult:
    files: list[RepositoryFile] = field(default_factory=list)
    matches: list[SearchMatch] = field(default_factory=list)


@dataclass
class ProjectStructure:
    files: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    template: str | None = None


@dataclass
class RepositoryStats:
    total_files: int = 0
    total_directories: int = 0
    total_size: int = 0
    file_types: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TreeEntry:
    """Input for a multi-file commit.

    ``content=None`` declares a sub-tree entry pointing at ``sha``; a null
    ``sha`` removes that sub-tree from the base tree.
    """

    path: str
    content: str | None = None
    mode: TreeMode = "100644"
    sha: str | None = None

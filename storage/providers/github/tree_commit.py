"""Atomic multi-file commit over the GitHub git-data API.

The pipeline is a fixed sequence of stages:

    head -> base tree -> blobs -> tree -> commit -> ref

Only the last stage mutates visible state. Any failure before it leaves the
branch untouched; blobs, trees or commits created by an aborted run are
unreferenced and harmless.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from storage.hashing import encode_base64
from storage.models import TreeEntry

logger = logging.getLogger(__name__)

RequestFn = Callable[..., Awaitable[Any]]


@dataclass
class CommitProgress:
    """What each stage produced so far; useful when a run aborts."""

    branch: str
    stage: str = "pending"
    head_sha: str | None = None
    base_tree_sha: str | None = None
    tree_entries: list[dict[str, Any]] = field(default_factory=list)
    tree_sha: str | None = None
    commit_sha: str | None = None
    ref_updated: bool = False


class TreeCommitPipeline:
    """Write many files as one commit on a branch.

    Args:
        request: coroutine ``request(method, endpoint, json=...)`` returning decoded JSON
        repo_prefix: ``/repos/<owner>/<repo>``
    """

    def __init__(self, request: RequestFn, repo_prefix: str) -> None:
        self._request = request
        self._prefix = repo_prefix

    async def run(self, entries: list[TreeEntry], message: str, branch: str) -> str:
        progress = CommitProgress(branch=branch)
        try:
            progress.stage = "head"
            progress.head_sha = await self.read_head(branch)

            progress.stage = "base_tree"
            progress.base_tree_sha = await self.read_base_tree(progress.head_sha)

            progress.stage = "blobs"
            progress.tree_entries = await self.build_entries(entries)

            progress.stage = "tree"
            progress.tree_sha = await self.create_tree(progress.base_tree_sha, progress.tree_entries)

            progress.stage = "commit"
            progress.commit_sha = await self.create_commit(message, progress.tree_sha, progress.head_sha)

            # single commit point
            progress.stage = "ref"
            await self.advance_ref(branch, progress.commit_sha)
            progress.ref_updated = True
        except Exception:
            logger.error(
                "[github] tree commit on %s aborted at stage %s (head=%s)",
                branch, progress.stage, progress.head_sha,
            )
            raise

        logger.info(
            "[github] committed %d entries to %s: %s -> %s",
            len(entries), branch, progress.head_sha, progress.commit_sha,
        )
        return progress.commit_sha

    async def read_head(self, branch: str) -> str:
        ref = await self._request("GET", f"{self._prefix}/git/ref/heads/{branch}")
        return ref["object"]["sha"]

    async def read_base_tree(self, commit_sha: str) -> str:
        commit = await self._request("GET", f"{self._prefix}/git/commits/{commit_sha}")
        return commit["tree"]["sha"]

    async def build_entries(self, entries: list[TreeEntry]) -> list[dict[str, Any]]:
        return list(await asyncio.gather(*(self._build_entry(entry) for entry in entries)))

    async def _build_entry(self, entry: TreeEntry) -> dict[str, Any]:
        if entry.content is None:
            return {"path": entry.path, "mode": "040000", "type": "tree", "sha": entry.sha}

        blob = await self._request(
            "POST",
            f"{self._prefix}/git/blobs",
            json={"content": encode_base64(entry.content), "encoding": "base64"},
        )
        return {"path": entry.path, "mode": entry.mode, "type": "blob", "sha": blob["sha"]}

    async def create_tree(self, base_tree_sha: str, tree_entries: list[dict[str, Any]]) -> str:
        tree = await self._request(
            "POST",
            f"{self._prefix}/git/trees",
            json={"base_tree": base_tree_sha, "tree": tree_entries},
        )
        return tree["sha"]

    async def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        commit = await self._request(
            "POST",
            f"{self._prefix}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [parent_sha]},
        )
        return commit["sha"]

    async def advance_ref(self, branch: str, commit_sha: str) -> None:
        # fast-forward only: a concurrent push makes this fail instead of being overwritten
        await self._request(
            "PATCH",
            f"{self._prefix}/git/refs/heads/{branch}",
            json={"sha": commit_sha, "force": False},
        )

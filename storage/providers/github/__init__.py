"""GitHub store provider."""

from .content_repo import GitHubRepository
from .tree_commit import CommitProgress, TreeCommitPipeline

__all__ = ["GitHubRepository", "TreeCommitPipeline", "CommitProgress"]

"""Local filesystem store provider."""

from .file_repo import FileSystemRepository

__all__ = ["FileSystemRepository"]

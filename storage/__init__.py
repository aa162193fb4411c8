from .config import FileSystemConfig, GitHubConfig, StoreConfig
from .container import StorageContainer, build_repository, create_store_service
from .contracts import StoreRepository
from .errors import (
    FileSystemRepositoryError,
    GitHubAPIError,
    PartialMoveError,
    RepositoryError,
    StoreError,
    StoreErrorCode,
    StoreServiceError,
)
from .models import (
    BatchOperationResult,
    CreateDirectoryOptions,
    CreateFileOptions,
    FileOperation,
    Identity,
    ProjectStructure,
    RepositoryFile,
    RepositoryStats,
    SearchOptions,
    SearchResult,
    TreeEntry,
    UpdateFileOptions,
)
from .service import StoreService

__all__ = [
    "StorageContainer",
    "build_repository",
    "create_store_service",
    "StoreConfig",
    "FileSystemConfig",
    "GitHubConfig",
    "StoreRepository",
    "StoreService",
    "StoreError",
    "StoreErrorCode",
    "RepositoryError",
    "FileSystemRepositoryError",
    "GitHubAPIError",
    "StoreServiceError",
    "PartialMoveError",
    "RepositoryFile",
    "CreateFileOptions",
    "UpdateFileOptions",
    "CreateDirectoryOptions",
    "FileOperation",
    "Identity",
    "BatchOperationResult",
    "SearchOptions",
    "SearchResult",
    "ProjectStructure",
    "RepositoryStats",
    "TreeEntry",
]

"""Error taxonomy shared by every repository backend and the store service.

Backends raise ``RepositoryError`` subclasses with a stable ``code``; the
service wraps them in ``StoreServiceError`` so callers can branch on one
backend-independent code set.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class StoreErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT = "CONFLICT"
    PATH_OUTSIDE_BOUNDS = "PATH_OUTSIDE_BOUNDS"
    IS_DIRECTORY = "IS_DIRECTORY"
    IS_FILE = "IS_FILE"
    VALIDATION = "VALIDATION"
    NO_CONTENT = "NO_CONTENT"
    API_ERROR = "API_ERROR"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    INIT_ERROR = "INIT_ERROR"
    CLEANUP_FAILED = "CLEANUP_FAILED"
    IO_ERROR = "IO_ERROR"
    TIMEOUT = "TIMEOUT"

    # service-level codes
    CREATE_FILE_FAILED = "CREATE_FILE_FAILED"
    UPDATE_FILE_FAILED = "UPDATE_FILE_FAILED"
    SAVE_FILE_FAILED = "SAVE_FILE_FAILED"
    DELETE_FILE_FAILED = "DELETE_FILE_FAILED"
    CREATE_DIRECTORY_FAILED = "CREATE_DIRECTORY_FAILED"
    COPY_FILE_FAILED = "COPY_FILE_FAILED"
    MOVE_FILE_FAILED = "MOVE_FILE_FAILED"
    MOVE_PARTIAL = "MOVE_PARTIAL"
    SEARCH_FAILED = "SEARCH_FAILED"
    STATS_FAILED = "STATS_FAILED"
    BACKUP_FAILED = "BACKUP_FAILED"


class StoreError(Exception):
    """Base class for all store errors."""

    def __init__(self, message: str, code: StoreErrorCode, path: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "path": self.path}


class RepositoryError(StoreError):
    """Raised by a repository backend."""


class FileSystemRepositoryError(RepositoryError):
    """Raised by the local filesystem backend."""


class GitHubAPIError(RepositoryError):
    """Raised by the GitHub backend.

    ``status`` is the HTTP status (0 for transport failures) and ``response``
    the decoded error body, kept verbatim for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status: int,
        response: Any = None,
        code: StoreErrorCode = StoreErrorCode.API_ERROR,
        path: str | None = None,
    ) -> None:
        super().__init__(message, code, path)
        self.status = status
        self.response = response


class StoreServiceError(StoreError):
    """Operation-scoped failure raised by ``StoreService``."""

    def __init__(
        self,
        message: str,
        code: StoreErrorCode,
        path: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, code, path)
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.cause is not None:
            payload["cause"] = str(self.cause)
            cause_code = getattr(self.cause, "code", None)
            if isinstance(cause_code, StoreErrorCode):
                payload["cause_code"] = cause_code.value
        return payload


class PartialMoveError(StoreServiceError):
    """Move copied the file but could not remove the source.

    Both ``source`` and ``destination`` are live afterwards; ``destination_file``
    is the record created by the copy.
    """

    def __init__(
        self,
        source: str,
        destination: str,
        destination_file: Any,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f'Moved "{source}" to "{destination}" but failed to remove the source',
            StoreErrorCode.MOVE_PARTIAL,
            path=source,
            cause=cause,
        )
        self.source = source
        self.destination = destination
        self.destination_file = destination_file

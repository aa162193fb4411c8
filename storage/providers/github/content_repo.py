"""GitHub repository backend.

Maps the store contract onto the GitHub contents API, scoped to one
owner/repo/base directory taken from ``GitHubConfig``.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import asdict
from typing import Any
from urllib.parse import quote

import httpx

from storage.config import GitHubConfig
from storage.contracts import StoreRepository
from storage.errors import GitHubAPIError, StoreErrorCode
from storage.hashing import decode_base64, encode_base64
from storage.models import (
    DIRECTORY_MARKER,
    CreateDirectoryOptions,
    CreateFileOptions,
    Identity,
    RepositoryFile,
    TreeEntry,
    UpdateFileOptions,
)
from storage.providers.github.tree_commit import TreeCommitPipeline

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"

_STATUS_CODES: dict[int, StoreErrorCode] = {
    404: StoreErrorCode.NOT_FOUND,
    409: StoreErrorCode.CONFLICT,
    422: StoreErrorCode.CONFLICT,
}


def classify_status(status: int) -> StoreErrorCode:
    return _STATUS_CODES.get(status, StoreErrorCode.API_ERROR)


class GitHubRepository(StoreRepository):
    """Repository backed by a GitHub repository.

    Args:
        config: owner, repo, token, base directory and branch
        client: optional pre-built ``httpx.AsyncClient`` (tests inject a
            MockTransport here); otherwise one is created and owned
    """

    name = "github"

    def __init__(self, config: GitHubConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._prefix = f"/repos/{config.owner}/{config.repo}"
        self._owns_client = client is None
        headers = {
            "Authorization": f"Bearer {config.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": config.user_agent,
            "X-GitHub-Api-Version": API_VERSION,
        }
        if client is None:
            client = httpx.AsyncClient(
                base_url=config.base_url,
                headers=headers,
                timeout=httpx.Timeout(config.timeout),
            )
        else:
            client.headers.update(headers)
        self._client = client
        logger.info("[github] repository %s/%s (base_dir=%r)", config.owner, config.repo, config.base_dir)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── transport ──

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        path: str | None = None,
    ) -> Any:
        logger.debug("[github] %s %s", method, endpoint)
        try:
            response = await self._client.request(method, endpoint, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error("[github] request failed: %s %s: %s", method, endpoint, e)
            raise GitHubAPIError(
                f"Network error: {e}", 0, None, StoreErrorCode.TRANSPORT_ERROR, path
            ) from e

        if response.is_error:
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            code = classify_status(response.status_code)
            if code == StoreErrorCode.API_ERROR:
                logger.error("[github] %s %s -> %s: %s", method, endpoint, response.status_code, body)
            raise GitHubAPIError(
                f"GitHub API error: {response.status_code} {response.reason_phrase}",
                response.status_code,
                body,
                code,
                path,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ── path mapping ──

    def _scoped(self, path: str) -> str:
        """Repository-root path for a store path, confined to ``base_dir``."""
        clean = posixpath.normpath("/" + path.replace("\\", "/")).lstrip("/")
        relative = posixpath.normpath(path.replace("\\", "/") or ".")
        if relative == ".." or relative.startswith("../"):
            raise GitHubAPIError(
                f'Path "{path}" is outside the repository base directory',
                0,
                None,
                StoreErrorCode.PATH_OUTSIDE_BOUNDS,
                path,
            )
        base = self._config.base_dir
        if not clean:
            return base
        return f"{base}/{clean}" if base else clean

    def _unscoped(self, repo_path: str) -> str:
        base = self._config.base_dir
        if base and (repo_path == base or repo_path.startswith(base + "/")):
            return repo_path[len(base):].lstrip("/")
        return repo_path

    def _contents_endpoint(self, path: str) -> str:
        return f"{self._prefix}/contents/{quote(self._scoped(path))}"

    def _to_record(self, item: dict[str, Any], decode: bool = True) -> RepositoryFile:
        content = item.get("content")
        encoding = item.get("encoding")
        if decode and content is not None and encoding == "base64":
            content = decode_base64(content)
            encoding = "utf-8"
        return RepositoryFile(
            name=item.get("name") or posixpath.basename(item["path"]),
            path=self._unscoped(item["path"]),
            sha=item["sha"],
            size=int(item.get("size", 0)),
            type="dir" if item.get("type") == "dir" else "file",
            content=content if decode else None,
            encoding=encoding if decode and content is not None else None,
        )

    @staticmethod
    def _identity(identity: Identity | None) -> dict[str, str] | None:
        return asdict(identity) if identity else None

    def _write_body(self, options: CreateFileOptions | UpdateFileOptions, sha: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "message": options.message,
            "content": encode_base64(options.content),
            "branch": options.branch or self._config.branch,
        }
        if sha is not None:
            body["sha"] = sha
        if options.author:
            body["author"] = self._identity(options.author)
        if options.committer:
            body["committer"] = self._identity(options.committer)
        return body

    async def _get_contents(self, path: str, ref: str | None) -> dict[str, Any] | list[dict[str, Any]]:
        return await self._request(
            "GET",
            self._contents_endpoint(path),
            params={"ref": ref or self._config.branch},
            path=path,
        )

    # ── contract ──

    async def retrieve_file(self, path: str, ref: str | None = None) -> RepositoryFile:
        result = await self._get_contents(path, ref)
        if isinstance(result, list) or result.get("type") == "dir":
            raise GitHubAPIError(
                f'Path "{path}" is a directory, not a file', 0, None, StoreErrorCode.IS_DIRECTORY, path
            )

        if result.get("content") is None or result.get("encoding") == "none":
            # files over 1MB come back without inline content
            blob = await self._request("GET", f"{self._prefix}/git/blobs/{result['sha']}", path=path)
            result = {**result, "content": blob["content"], "encoding": blob["encoding"]}
        return self._to_record(result)

    async def create_file(self, path: str, options: CreateFileOptions) -> RepositoryFile:
        try:
            response = await self._request(
                "PUT", self._contents_endpoint(path), json=self._write_body(options), path=path
            )
        except GitHubAPIError as e:
            # a PUT without sha on an existing path is rejected as unprocessable;
            # 409 is a concurrent branch update and stays CONFLICT
            if e.status == 422:
                raise GitHubAPIError(
                    f'File "{path}" already exists', e.status, e.response, StoreErrorCode.ALREADY_EXISTS, path
                ) from e
            raise
        return self._written_record(response, options.content)

    async def update_file(self, path: str, options: UpdateFileOptions) -> RepositoryFile:
        response = await self._request(
            "PUT", self._contents_endpoint(path), json=self._write_body(options, sha=options.sha), path=path
        )
        return self._written_record(response, options.content)

    def _written_record(self, response: dict[str, Any], content: str) -> RepositoryFile:
        record = self._to_record(response["content"], decode=False)
        record.content = content
        record.encoding = "utf-8"
        return record

    async def delete_file(self, path: str, message: str, sha: str, branch: str | None = None) -> None:
        await self._request(
            "DELETE",
            self._contents_endpoint(path),
            json={"message": message, "sha": sha, "branch": branch or self._config.branch},
            path=path,
        )

    async def create_directory(self, path: str, options: CreateDirectoryOptions) -> RepositoryFile:
        """Establish ``path`` by writing an empty marker file inside it."""
        marker = posixpath.join(path.strip("/"), DIRECTORY_MARKER)
        try:
            created = await self.create_file(
                marker,
                CreateFileOptions(
                    message=options.message,
                    content="",
                    branch=options.branch,
                    author=options.author,
                    committer=options.committer,
                ),
            )
            sha = created.sha
        except GitHubAPIError as e:
            if e.code != StoreErrorCode.ALREADY_EXISTS:
                raise
            sha = (await self.retrieve_file(marker, options.branch)).sha
        return RepositoryFile(
            name=posixpath.basename(path.strip("/")),
            path=path,
            sha=sha,
            size=0,
            type="dir",
        )

    async def list_directory(self, path: str = "", ref: str | None = None) -> list[RepositoryFile]:
        result = await self._get_contents(path, ref)
        if not isinstance(result, list):
            raise GitHubAPIError(
                f'Path "{path}" is a file, not a directory', 0, None, StoreErrorCode.IS_FILE, path
            )
        return [self._to_record(item, decode=False) for item in result]

    async def exists(self, path: str, ref: str | None = None) -> bool:
        try:
            await self._get_contents(path, ref)
            return True
        except GitHubAPIError as e:
            if e.code == StoreErrorCode.NOT_FOUND:
                return False
            raise

    # ── remote-only surface ──

    async def create_tree(self, entries: list[TreeEntry], message: str, branch: str | None = None) -> str:
        """Write all ``entries`` as a single commit and return its sha."""
        scoped = [
            TreeEntry(path=self._scoped(entry.path), content=entry.content, mode=entry.mode, sha=entry.sha)
            for entry in entries
        ]
        pipeline = TreeCommitPipeline(self._request, self._prefix)
        return await pipeline.run(scoped, message, branch or self._config.branch)

    async def get_repository_info(self) -> dict[str, Any]:
        return await self._request("GET", self._prefix)

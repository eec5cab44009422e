# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Any, Protocol
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel

from repo_preview.config import PreviewConfig
from repo_preview.exceptions import (
    FetchError,
    RateLimitError,
    RepositoryAccessDeniedError,
    RepositoryNotFoundError,
)


class RemoteEntry(BaseModel):
    """One item of a contents listing as returned by the remote API."""

    name: str
    path: str
    type: str
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.type == "dir"


class RepositoryClient(Protocol):
    async def list_contents(self, owner: str, repo: str, path: str = ".") -> list[RemoteEntry] | RemoteEntry:
        ...

    async def get_raw_content(self, owner: str, repo: str, path: str) -> bytes:
        ...

    async def check_repository(self, owner: str, repo: str) -> None:
        ...


class GitHubClient:
    """Repository client backed by the GitHub REST contents API."""

    def __init__(self, config: PreviewConfig | None = None, client: httpx.AsyncClient | None = None):
        """Initializes the GitHubClient.

        Args:
            config: Configuration carrying the API URL, token and timeout.
            client: Optional httpx.AsyncClient for connection pooling.
        """
        self.config = config or PreviewConfig()
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.request_timeout)
        self._base_url = self.config.github_api_url.rstrip("/")

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    def _headers(self, accept: str) -> dict[str, str]:
        headers = {
            "Accept": accept,
            "User-Agent": "repo-preview",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        return headers

    @staticmethod
    def _contents_path(owner: str, repo: str, path: str) -> str:
        cleaned = path.strip("/")
        if cleaned in ("", "."):
            return f"/repos/{owner}/{repo}/contents"
        return f"/repos/{owner}/{repo}/contents/{quote(cleaned)}"

    async def _get(self, path: str, accept: str = "application/vnd.github+json") -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url, headers=self._headers(accept))
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {url} failed: {e}", path=path) from e

        if response.status_code in (403, 429) and self._is_rate_limited(response):
            reset = response.headers.get("x-ratelimit-reset")
            raise RateLimitError(
                "GitHub API rate limit exhausted",
                path=path,
                reset_at=int(reset) if reset and reset.isdigit() else None,
            )
        if response.status_code == 404:
            raise RepositoryNotFoundError(f"Not found: {path}", path=path, status_code=404)
        if response.status_code == 403:
            raise RepositoryAccessDeniedError(f"Access denied: {path}", path=path, status_code=403)
        if response.is_error:
            raise FetchError(
                f"GitHub API error {response.status_code}: {response.text}",
                path=path,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        return response.headers.get("x-ratelimit-remaining") == "0"

    async def list_contents(self, owner: str, repo: str, path: str = ".") -> list[RemoteEntry] | RemoteEntry:
        """List a directory, or describe a single file when path points at one.

        Args:
            owner: Repository owner.
            repo: Repository name.
            path: Path inside the repository. Defaults to the root.

        Returns:
            A list of entries for a directory, a single entry for a file.

        Raises:
            FetchError: On transport errors and non-success responses.
        """
        response = await self._get(self._contents_path(owner, repo, path))
        data = response.json()
        if isinstance(data, list):
            return [RemoteEntry.model_validate(item) for item in data]
        return RemoteEntry.model_validate(data)

    async def get_raw_content(self, owner: str, repo: str, path: str) -> bytes:
        """Fetch a file body. Listing responses may omit it, so this is a separate request."""
        response = await self._get(self._contents_path(owner, repo, path), accept="application/vnd.github.raw")
        return response.content

    async def check_repository(self, owner: str, repo: str) -> None:
        """Raise unless the repository exists and is readable.

        Raises:
            RepositoryNotFoundError: The repository does not exist.
            RepositoryAccessDeniedError: The token may not read the repository.
            FetchError: Any other failure.
        """
        await self._get(f"/repos/{owner}/{repo}")
        logger.debug(f"Repository {owner}/{repo} is accessible")

    async def get_rate_limit(self) -> dict[str, Any]:
        """Current core quota: remaining, limit and reset timestamp."""
        response = await self._get("/rate_limit")
        core = response.json().get("resources", {}).get("core", {})
        return {
            "remaining": core.get("remaining"),
            "limit": core.get("limit"),
            "reset": core.get("reset"),
        }

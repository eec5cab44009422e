# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Any, Awaitable, Callable, TypeVar

import anyio
from loguru import logger

from repo_preview.config import PreviewConfig
from repo_preview.exceptions import FetchError, RateLimitError
from repo_preview.models import FetchFailure, RepoNode
from repo_preview.remote import RemoteEntry, RepositoryClient

T = TypeVar("T")


class TreeFetcher:
    """Recursively walks a remote repository into an ordered RepoNode tree.

    A failure at one node is recorded and logged, and the node is still emitted
    without its content or children. Siblings and ancestors are never aborted.
    """

    def __init__(self, client: RepositoryClient, config: PreviewConfig | None = None):
        """Initializes the TreeFetcher.

        Args:
            client: The remote repository collaborator.
            config: Configuration for concurrency, depth and size limits.
        """
        self.client = client
        self.config = config or PreviewConfig()
        self.failures: list[FetchFailure] = []
        self.rate_limited = False
        self._limiter = anyio.CapacityLimiter(self.config.fetch_concurrency)
        self._visited: set[str] = set()

    async def fetch_tree(self, owner: str, repo: str, path: str = ".") -> list[RepoNode]:
        """Fetch the tree rooted at path.

        Args:
            owner: Repository owner.
            repo: Repository name.
            path: Path to start from. Defaults to the repository root.

        Returns:
            list[RepoNode]: Root entries in remote listing order. Empty if the
            root listing itself failed.
        """
        self.failures = []
        self.rate_limited = False
        self._limiter = anyio.CapacityLimiter(self.config.fetch_concurrency)
        self._visited = set()

        logger.info(f"Fetching tree for {owner}/{repo} at '{path}'")
        try:
            listing = await self._call(self.client.list_contents, owner, repo, path)
        except Exception as e:
            self._record(path, e)
            return []

        if isinstance(listing, RemoteEntry):
            # Path points at a single file rather than a directory.
            return [await self._fetch_node(owner, repo, listing, depth=1)]

        tree = await self._fetch_children(owner, repo, listing, depth=1)
        logger.info(f"Fetched {owner}/{repo}: {len(tree)} root entries, {len(self.failures)} failures")
        return tree

    async def _fetch_children(
        self, owner: str, repo: str, entries: list[RemoteEntry], depth: int
    ) -> list[RepoNode]:
        unique: list[RemoteEntry] = []
        for entry in entries:
            if entry.path in self._visited:
                self._record(entry.path, FetchError("Duplicate path in listing", path=entry.path))
                continue
            self._visited.add(entry.path)
            unique.append(entry)

        results: list[RepoNode | None] = [None] * len(unique)

        async def fill(index: int, entry: RemoteEntry) -> None:
            results[index] = await self._fetch_node(owner, repo, entry, depth)

        async with anyio.create_task_group() as tg:
            for index, entry in enumerate(unique):
                tg.start_soon(fill, index, entry)

        return [node for node in results if node is not None]

    async def _fetch_node(self, owner: str, repo: str, entry: RemoteEntry, depth: int) -> RepoNode:
        if entry.is_dir:
            return await self._fetch_directory(owner, repo, entry, depth)
        return await self._fetch_file(owner, repo, entry)

    async def _fetch_directory(self, owner: str, repo: str, entry: RemoteEntry, depth: int) -> RepoNode:
        node = RepoNode(name=entry.name, path=entry.path, kind="directory", children=[])
        if depth >= self.config.max_tree_depth:
            self._record(entry.path, FetchError(f"Maximum tree depth {self.config.max_tree_depth} reached"))
            return node

        try:
            listing = await self._call(self.client.list_contents, owner, repo, entry.path)
        except Exception as e:
            self._record(entry.path, e)
            return node

        if isinstance(listing, RemoteEntry):
            self._record(entry.path, FetchError("Directory listing returned a single entry", path=entry.path))
            return node

        node.children = await self._fetch_children(owner, repo, listing, depth + 1)
        return node

    async def _fetch_file(self, owner: str, repo: str, entry: RemoteEntry) -> RepoNode:
        if entry.size > self.config.max_file_size:
            self._record(entry.path, FetchError(f"File too large ({entry.size} bytes)", path=entry.path))
            return RepoNode(name=entry.name, path=entry.path, kind="file")

        try:
            body = await self._call(self.client.get_raw_content, owner, repo, entry.path)
            return RepoNode.from_bytes(entry.name, entry.path, body)
        except Exception as e:
            self._record(entry.path, e)
            return RepoNode(name=entry.name, path=entry.path, kind="file")

    async def _call(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Issue one remote request under the concurrency limit.

        Once the quota is exhausted no further requests are sent for this walk.
        """
        async with self._limiter:
            if self.rate_limited:
                raise RateLimitError("Skipped: rate limit exhausted earlier in this walk")
            try:
                return await func(*args)
            except RateLimitError:
                if not self.rate_limited:
                    self.rate_limited = True
                    logger.error("GitHub rate limit exhausted. Remaining entries will be emitted without content.")
                raise

    def _record(self, path: str, error: Exception) -> None:
        self.failures.append(FetchFailure(path=path, reason=str(error)))
        if isinstance(error, RateLimitError):
            logger.debug(f"Rate limited while fetching {path}")
        else:
            logger.warning(f"Error fetching {path}: {error}")

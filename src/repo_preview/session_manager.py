# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
from dataclasses import dataclass

from loguru import logger

from repo_preview.cache import TreeCache
from repo_preview.config import PreviewConfig
from repo_preview.events import SessionObserver
from repo_preview.factory import SandboxFactory
from repo_preview.fetcher import TreeFetcher
from repo_preview.remote import GitHubClient, RepositoryClient
from repo_preview.session import PreviewSession


@dataclass
class ManagedSession:
    session: PreviewSession
    task: asyncio.Task[None]


class SessionManager:
    """Manages preview sessions, one active session per repository.

    Every open or restart boots a fresh sandbox; sandboxes are never shared
    between sessions.
    """

    def __init__(
        self,
        config: PreviewConfig | None = None,
        client: RepositoryClient | None = None,
        cache: TreeCache | None = None,
    ):
        """Initializes the SessionManager.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
            client: Optional repository client. A GitHubClient is created by default.
            cache: Optional tree cache shared by all sessions.
        """
        self.config = config or PreviewConfig()
        self._internal_client = client is None
        self.client: RepositoryClient = client or GitHubClient(self.config)
        self.cache = cache if cache is not None else TreeCache()
        self.sessions: dict[str, ManagedSession] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(owner: str, repo: str) -> str:
        if not owner or not repo:
            raise ValueError("Owner and repo are required")
        return f"{owner}/{repo}"

    def get(self, owner: str, repo: str) -> PreviewSession | None:
        managed = self.sessions.get(self._key(owner, repo))
        return managed.session if managed else None

    async def open(self, owner: str, repo: str, observer: SessionObserver | None = None) -> PreviewSession:
        """Return the active session for the repository, starting one if needed.

        The pipeline runs in a background task; subscribe an observer or call
        wait_until_ready() to follow it.
        """
        key = self._key(owner, repo)
        async with self._lock:
            managed = self.sessions.get(key)
            if managed and not managed.session.closed:
                if observer:
                    managed.session.subscribe(observer)
                return managed.session
            return self._start(owner, repo, observer)

    async def restart(self, owner: str, repo: str, observer: SessionObserver | None = None) -> PreviewSession:
        """Abandon the current session for the repository and boot a fresh one."""
        key = self._key(owner, repo)
        async with self._lock:
            managed = self.sessions.pop(key, None)
            if managed:
                logger.info(f"Restarting session for {key}")
                await self._abandon(managed)
            return self._start(owner, repo, observer)

    def _start(self, owner: str, repo: str, observer: SessionObserver | None) -> PreviewSession:
        runtime = SandboxFactory.get_runtime(self.config)
        session = PreviewSession(
            owner,
            repo,
            runtime=runtime,
            fetcher=TreeFetcher(self.client, self.config),
            cache=self.cache,
            config=self.config,
        )
        if observer:
            session.subscribe(observer)
        logger.info(
            "Allocating preview session",
            repository=f"{owner}/{repo}",
            session_id=session.session_id,
            runtime=type(runtime).__name__,
        )
        task = asyncio.create_task(session.run())
        self.sessions[self._key(owner, repo)] = ManagedSession(session=session, task=task)
        return session

    async def _abandon(self, managed: ManagedSession) -> None:
        if not managed.task.done():
            managed.task.cancel()
            try:
                await managed.task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Pipeline of session {managed.session.session_id} ended with error: {e}")
        await managed.session.close()

    def invalidate_cache(self, owner: str, repo: str) -> bool:
        return self.cache.invalidate(owner, repo)

    async def shutdown(self) -> None:
        """Tear down all sessions and release the repository client."""
        logger.info(f"Shutting down SessionManager. Closing {len(self.sessions)} sessions.")
        sessions_to_close = list(self.sessions.values())
        self.sessions.clear()

        for managed in sessions_to_close:
            try:
                await self._abandon(managed)
            except Exception as e:
                logger.error(f"Error closing session during shutdown: {e}")

        if self._internal_client and isinstance(self.client, GitHubClient):
            await self.client.aclose()

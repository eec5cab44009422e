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
import re
from typing import Callable
from uuid import uuid4

from loguru import logger

from repo_preview.cache import TreeCache
from repo_preview.config import PreviewConfig
from repo_preview.events import EventBus, SessionObserver
from repo_preview.exceptions import SaveError, ServerStartError
from repo_preview.fetcher import TreeFetcher
from repo_preview.models import MountReport, RepoNode, SessionStatus
from repo_preview.models.tree import update_content
from repo_preview.orchestrator import MountOrchestrator
from repo_preview.runtime import SandboxRuntime, Unsubscribe
from repo_preview.supervisor import ProcessSupervisor, ShellHandle, SupervisedProcess

_SCHEME = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://")


def compose_preview_url(port: int, host: str, default_scheme: str = "https") -> str:
    """Build the externally reachable URL from a server-ready (port, host) pair.

    Any scheme prefix on host is stripped before recomposition and reused;
    default_scheme applies when host carries none.

    >>> compose_preview_url(3000, "https://1-2-3.example.com")
    'https://1-2-3.example.com:3000'
    """
    host = host.strip()
    match = _SCHEME.match(host)
    scheme = match.group(1).lower() if match else default_scheme
    bare = (host[match.end() :] if match else host).rstrip("/")
    if not bare.endswith(f":{port}"):
        bare = f"{bare}:{port}"
    return f"{scheme}://{bare}"


class PreviewSession:
    """One materialization attempt: fetch, convert, mount, install and start.

    The session exclusively owns its sandbox runtime, its log and its status.
    Nothing is rolled back on failure; a failed session is replaced, not resumed.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        runtime: SandboxRuntime,
        fetcher: TreeFetcher,
        cache: TreeCache | None = None,
        config: PreviewConfig | None = None,
        bus: EventBus | None = None,
    ):
        """Initializes the PreviewSession.

        Args:
            owner: Repository owner.
            repo: Repository name.
            runtime: A fresh, un-booted sandbox runtime.
            fetcher: Tree fetcher bound to a repository client.
            cache: Optional tree cache. A hit bypasses the fetcher.
            config: Pipeline configuration.
            bus: Optional event bus. A new one is created by default.
        """
        self.owner = owner
        self.repo = repo
        self.session_id = str(uuid4())
        self.runtime = runtime
        self.fetcher = fetcher
        self.cache = cache
        self.config = config or PreviewConfig()
        self.bus = bus or EventBus()
        self.supervisor = ProcessSupervisor(runtime, self.bus, self.config)
        self.orchestrator = MountOrchestrator(runtime, self.supervisor, self.bus, self.config)

        self.status = SessionStatus.BOOTING
        self.failure_reason: str | None = None
        self.tree: list[RepoNode] = []
        self.mount_report: MountReport | None = None
        self.dev_server: SupervisedProcess | None = None
        self.shell: ShellHandle | None = None
        self.unsaved_edits: dict[str, str] = {}

        self._unsubscribe_ready: Unsubscribe | None = None
        self._dev_watch: asyncio.Task[None] | None = None
        self._installing = False
        self._dev_requested = False
        self._accepting_ready = False
        self._closed = False

    @property
    def preview_url(self) -> str | None:
        return self.bus.ready.url

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        return self.bus.subscribe(observer)

    def _set_status(self, status: SessionStatus, reason: str | None = None) -> None:
        self.status = status
        self.failure_reason = reason
        logger.info(f"Session {self.session_id} ({self.owner}/{self.repo}) -> {status.value}")
        self.bus.publish_status(status, reason)

    def _fail(self, reason: str) -> None:
        self.bus.emit(f"Error: {reason}", level="ERROR")
        self._set_status(SessionStatus.FAILED, reason)

    async def run(self) -> None:
        """Run the whole pipeline. Errors end in SessionStatus.FAILED rather than propagating."""
        try:
            self._set_status(SessionStatus.BOOTING)
            self.bus.emit("Booting sandbox...")
            await self.runtime.boot()
            self._unsubscribe_ready = self.runtime.on("server-ready", self._on_server_ready)
            self.bus.emit("Sandbox booted successfully")

            self._set_status(SessionStatus.FETCHING_TREE)
            self.tree = await self._load_tree()

            self._set_status(SessionStatus.CONVERTING)
            manifest, used_scaffold = self.orchestrator.prepare(self.tree)

            self._set_status(SessionStatus.MOUNTING)
            self.mount_report = await self.orchestrator.materialize(manifest, used_scaffold)

            self._set_status(SessionStatus.INSTALLING)
            await self.supervisor.install()

            self._set_status(SessionStatus.STARTING)
            self._accepting_ready = True
            self.dev_server = await self.supervisor.start_dev_server()
            self._dev_watch = asyncio.create_task(self._watch_dev_server(self.dev_server))
        except ServerStartError as e:
            self._fail(str(e))
        except asyncio.CancelledError:
            self.bus.emit("Session cancelled", level="WARNING")
            raise
        except Exception as e:
            logger.exception(f"Session {self.session_id} failed")
            self._fail(f"{type(e).__name__}: {e}")

    async def _load_tree(self) -> list[RepoNode]:
        if self.cache is not None and self.config.cache_enabled:
            cached = self.cache.get(self.owner, self.repo)
            if cached is not None:
                self.bus.emit("Loading repository data from cache")
                return cached

        self.bus.emit("Fetching repository data...")
        tree = await self.fetcher.fetch_tree(self.owner, self.repo)
        for failure in self.fetcher.failures:
            self.bus.emit(f"Could not fetch {failure.path}: {failure.reason}", source="fetcher", level="WARNING")
        if self.fetcher.rate_limited:
            self.bus.emit("GitHub rate limit exhausted; the repository tree is incomplete", level="ERROR")

        self.bus.emit(f"Found {len(tree)} top-level items in the repository")
        if self.cache is not None and self.config.cache_enabled and not self.fetcher.failures:
            self.cache.put(self.owner, self.repo, tree)
        return tree

    def _on_server_ready(self, port: int, host: str) -> None:
        if self._closed or self.status == SessionStatus.FAILED:
            return
        if not self._accepting_ready:
            # Whatever answered is not our dev server.
            self.bus.emit(f"Ignoring server-ready on port {port}: dev server not started yet", level="WARNING")
            return
        self.bus.emit(f"Server ready at: {host}:{port}")
        url = compose_preview_url(port, host, self.config.preview_scheme)
        self.bus.emit(f"App URL: {url}")
        self.bus.publish_ready(url)
        self._set_status(SessionStatus.READY)

    async def _watch_dev_server(self, process: SupervisedProcess) -> None:
        code = await process.wait()
        if self._closed:
            return
        if self.preview_url is None:
            self._fail(str(ServerStartError(f"Dev server exited with code {code} before becoming ready")))
        else:
            # The bound preview address survives a later exit.
            self.bus.emit(f"Dev server exited with code {code}", level="WARNING")

    async def wait_until_ready(self, timeout: float | None = None) -> str:
        """Wait for the preview URL to be bound.

        Raises:
            TimeoutError: If the server does not become ready in time.
        """
        return await self.bus.ready.wait(timeout)

    async def open_shell(
        self,
        on_output: Callable[[str], None] | None = None,
        cols: int | None = None,
        rows: int | None = None,
    ) -> ShellHandle:
        self.shell = await self.supervisor.open_shell(on_output, cols, rows)
        self.bus.emit("Terminal ready")
        return self.shell

    async def send_input(self, data: str) -> None:
        if not self.shell:
            raise RuntimeError("Shell not initialized")
        await self.shell.write(data)

    async def resize_terminal(self, cols: int, rows: int) -> None:
        if self.shell:
            await self.shell.resize(cols, rows)

    async def request_install(self) -> bool:
        """Type the install command into the shell. Ignored while a previous request is in flight."""
        if not self.shell:
            self.bus.emit("Shell not initialized", level="WARNING")
            return False
        if self._installing:
            return False
        self._installing = True
        try:
            self.bus.emit("Installing dependencies...")
            await self.shell.run_command(" ".join(self.config.install_command))
            return True
        finally:
            self._installing = False

    async def request_dev_server(self) -> bool:
        """Type the dev command into the shell, once."""
        if not self.shell:
            self.bus.emit("Shell not initialized", level="WARNING")
            return False
        if self._dev_requested:
            return False
        self._dev_requested = True
        self.bus.emit("Starting development server...")
        await self.shell.run_command("npm run dev")
        return True

    async def open_file(self, path: str) -> str | None:
        if path in self.unsaved_edits:
            return self.unsaved_edits[path]
        try:
            return await self.runtime.read_file(path)
        except Exception as e:
            self.bus.emit(f"Error opening file {path}: {e}", level="ERROR")
            return None

    async def save_file(self, path: str, contents: str) -> bool:
        """Write edited content back to the sandbox.

        On failure the edit is kept in unsaved_edits so nothing is lost.

        Returns:
            bool: True if the sandbox accepted the write.
        """
        try:
            await self.runtime.write_file(path, contents)
        except Exception as e:
            error = SaveError(f"Error saving file {path}: {e}")
            self.bus.emit(str(error), level="ERROR")
            self.unsaved_edits[path] = contents
            return False

        self.unsaved_edits.pop(path, None)
        if update_content(self.tree, path, contents) and self.cache is not None and self.config.cache_enabled:
            self.cache.put(self.owner, self.repo, self.tree)
        self.bus.emit(f"File saved: {path}")
        return True

    async def close(self) -> None:
        """Tear down: stop listening to the sandbox, dispose the terminal, release the runtime."""
        if self._closed:
            return
        self._closed = True

        if self._unsubscribe_ready:
            self._unsubscribe_ready()
            self._unsubscribe_ready = None
        self.bus.clear_observers()

        if self._dev_watch and not self._dev_watch.done():
            self._dev_watch.cancel()
            try:
                await self._dev_watch
            except asyncio.CancelledError:
                pass

        if self.shell:
            await self.shell.close()
        await self.supervisor.close()

        try:
            await self.runtime.teardown()
        except Exception as e:
            logger.error(f"Error tearing down sandbox for session {self.session_id}: {e}")
        self.bus.ready.reset()

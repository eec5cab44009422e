import asyncio
from typing import Any, AsyncIterator, Callable, Literal, Sequence

import pytest

from repo_preview.config import PreviewConfig
from repo_preview.events import EventBus
from repo_preview.exceptions import FetchError
from repo_preview.models import DirectoryEntry, FileEntry, MountManifest, RepoNode
from repo_preview.remote import RemoteEntry
from repo_preview.runtime import SandboxProcess, SandboxRuntime, ServerReadyCallback, Unsubscribe


def file_node(path: str, content: str | None = "") -> RepoNode:
    return RepoNode(name=path.rsplit("/", 1)[-1], path=path, kind="file", content=content)


def dir_node(path: str, children: list[RepoNode] | None = None) -> RepoNode:
    return RepoNode(name=path.rsplit("/", 1)[-1], path=path, kind="directory", children=children or [])


class FakeProcess(SandboxProcess):
    """Scripted process: yields its chunks, then exits when finished."""

    def __init__(
        self,
        command: str,
        args: Sequence[str],
        chunks: Sequence[str] = (),
        exit_code: int = 0,
        hold: bool = False,
        terminal: tuple[int, int] | None = None,
    ):
        self.command = command
        self.args = list(args)
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.terminal = terminal
        self.written: list[str] = []
        self.sizes: list[tuple[int, int]] = []
        self._done = asyncio.Event()
        if not hold:
            self._done.set()

    def finish(self, exit_code: int | None = None) -> None:
        if exit_code is not None:
            self.exit_code = exit_code
        self._done.set()

    async def output(self) -> AsyncIterator[str]:
        for chunk in self.chunks:
            yield chunk
        await self._done.wait()

    async def wait(self) -> int:
        await self._done.wait()
        return self.exit_code

    async def write(self, data: str) -> None:
        if self._done.is_set():
            raise RuntimeError(f"Input of {self.command} is closed")
        self.written.append(data)

    async def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))


class FakeRuntime(SandboxRuntime):
    """In-memory sandbox that records what it was asked to do."""

    def __init__(self) -> None:
        self.booted = False
        self.torn_down = False
        self.dirs: set[str] = set()
        self.files: dict[str, str | bytes] = {}
        self.mounted: list[str] = []
        self.fail_paths: dict[str, Exception] = {}
        self.spawned: list[FakeProcess] = []
        self.spawn_errors: dict[str, Exception] = {}
        self.write_error: Exception | None = None
        self.behaviors: dict[str, dict[str, Any]] = {
            "npm": {"chunks": ["added 12 packages\n"], "exit_code": 0},
            "npx": {"chunks": ["ready - started server\n"], "hold": True},
            "ls": {"chunks": ["package.json\n"], "exit_code": 0},
            "sh": {"hold": True},
        }
        self.listeners: list[ServerReadyCallback] = []
        self.spawn_hooks: dict[str, Callable[[], None]] = {}

    async def boot(self) -> None:
        self.booted = True

    async def mount(self, fragment: MountManifest) -> None:
        if not self.booted:
            raise RuntimeError("Sandbox not booted")
        for path, entry in fragment.items():
            if path in self.fail_paths:
                raise self.fail_paths[path]
            if "/" in path and path.rsplit("/", 1)[0] not in self.dirs:
                raise FileNotFoundError(f"Parent directory of {path} does not exist")
            if isinstance(entry, DirectoryEntry):
                self.dirs.add(path)
            elif isinstance(entry, FileEntry):
                self.files[path] = entry.contents
            self.mounted.append(path)

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        terminal: tuple[int, int] | None = None,
    ) -> SandboxProcess:
        if command in self.spawn_errors:
            raise self.spawn_errors[command]
        process = FakeProcess(command, args, terminal=terminal, **self.behaviors.get(command, {}))
        self.spawned.append(process)
        if command in self.spawn_hooks:
            self.spawn_hooks[command]()
        return process

    def processes(self, command: str) -> list[FakeProcess]:
        return [p for p in self.spawned if p.command == command]

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        contents = self.files[path]
        return contents.decode("utf-8") if isinstance(contents, bytes) else contents

    async def write_file(self, path: str, contents: str | bytes) -> None:
        if self.write_error:
            raise self.write_error
        self.files[path] = contents

    def on(self, event: Literal["server-ready"], callback: ServerReadyCallback) -> Unsubscribe:
        self.listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self.listeners:
                self.listeners.remove(callback)

        return unsubscribe

    def emit_server_ready(self, port: int, host: str) -> None:
        for callback in list(self.listeners):
            callback(port, host)

    async def teardown(self) -> None:
        self.torn_down = True


class FakeRepositoryClient:
    """Serves listings and file bodies from dictionaries keyed by repository path."""

    def __init__(
        self,
        listings: dict[str, list[RemoteEntry] | RemoteEntry | Exception] | None = None,
        files: dict[str, bytes | Exception] | None = None,
    ):
        self.listings = listings or {}
        self.files = files or {}
        self.calls: list[tuple[str, str]] = []
        self.checked: list[str] = []
        self.check_error: Exception | None = None

    async def list_contents(self, owner: str, repo: str, path: str = ".") -> list[RemoteEntry] | RemoteEntry:
        self.calls.append(("list", path))
        result = self.listings.get(path)
        if result is None:
            raise FetchError(f"Not found: {path}", path=path, status_code=404)
        if isinstance(result, Exception):
            raise result
        return result

    async def get_raw_content(self, owner: str, repo: str, path: str) -> bytes:
        self.calls.append(("raw", path))
        result = self.files.get(path)
        if result is None:
            raise FetchError(f"Not found: {path}", path=path, status_code=404)
        if isinstance(result, Exception):
            raise result
        return result

    async def check_repository(self, owner: str, repo: str) -> None:
        self.checked.append(f"{owner}/{repo}")
        if self.check_error:
            raise self.check_error


def entry(path: str, kind: str = "file", size: int = 10) -> RemoteEntry:
    return RemoteEntry(name=path.rsplit("/", 1)[-1], path=path, type=kind, size=size)


@pytest.fixture
def config() -> PreviewConfig:
    return PreviewConfig(github_token=None, fetch_concurrency=2, mount_concurrency=4)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def sample_client() -> FakeRepositoryClient:
    """A small Next.js repository with a src directory."""
    return FakeRepositoryClient(
        listings={
            ".": [entry("package.json"), entry("src", "dir"), entry(".gitignore")],
            "src": [entry("src/index.js"), entry("src/components", "dir")],
            "src/components": [entry("src/components/Button.js")],
        },
        files={
            "package.json": b'{"name": "demo", "scripts": {"dev": "next dev"}}',
            "src/index.js": b"export default function Home() {}",
            "src/components/Button.js": b"export const Button = () => null",
            ".gitignore": b"node_modules\n",
        },
    )

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
import codecs
import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncIterator, Literal, Sequence

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from repo_preview.config import PreviewConfig
from repo_preview.models import DirectoryEntry, FileEntry, MountManifest
from repo_preview.runtime import SandboxProcess, SandboxRuntime, ServerReadyCallback, Unsubscribe

LOCAL_HOST = "127.0.0.1"


async def _is_port_open(host: str, port: int, timeout: float = 0.35) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class LocalProcess(SandboxProcess):
    """A subprocess running in the sandbox directory with piped stdio."""

    def __init__(self, process: asyncio.subprocess.Process, command: str):
        self._process = process
        self.command = command
        self.size: tuple[int, int] | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    async def output(self) -> AsyncIterator[str]:
        stream = self._process.stdout
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail
                break
            text = decoder.decode(chunk)
            if text:
                yield text

    async def wait(self) -> int:
        return await self._process.wait()

    async def write(self, data: str) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise RuntimeError(f"Input of {self.command} is closed")
        stdin.write(data.encode("utf-8"))
        await stdin.drain()

    async def resize(self, cols: int, rows: int) -> None:
        # Piped processes have no tty to resize; the size is kept for the next spawn.
        self.size = (cols, rows)
        logger.debug(f"Resize {self.command} to {cols}x{rows}")

    async def terminate(self, grace: float = 5.0) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
            await asyncio.wait_for(self._process.wait(), timeout=grace)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            self._process.kill()
            await self._process.wait()


class LocalRuntime(SandboxRuntime):
    """
    Sandbox runtime backed by a private temporary directory and local subprocesses.
    Readiness is detected by polling the configured dev server port.
    """

    def __init__(self, config: PreviewConfig | None = None, base_dir: str | None = None):
        """Initializes the LocalRuntime.

        Args:
            config: Configuration supplying the watched port and poll interval.
            base_dir: Optional parent directory for the sandbox root.
        """
        self.config = config or PreviewConfig()
        self.base_dir = base_dir
        self.root: Path | None = None
        self.ports: set[int] = {self.config.dev_server_port}
        self._processes: list[LocalProcess] = []
        self._listeners: list[ServerReadyCallback] = []
        self._open_ports: set[int] = set()
        self._watcher: asyncio.Task[None] | None = None

    async def boot(self) -> None:
        """
        Boot the environment.
        """
        if self.root:
            logger.warning("Local sandbox already booted. Tearing down before reboot.")
            await self.teardown()

        self.root = Path(tempfile.mkdtemp(prefix="repo-preview-", dir=self.base_dir))
        self._watcher = asyncio.create_task(self._watch_ports())
        logger.info(f"Local sandbox booted at {self.root}")

    def _require_root(self) -> Path:
        if not self.root:
            raise RuntimeError("Sandbox not booted")
        return self.root

    def _resolve_path(self, path: str) -> Path:
        root = self._require_root().resolve()
        resolved = (root / path.lstrip("/")).resolve()
        if root != resolved and root not in resolved.parents:
            raise ValueError(f"Path escapes sandbox: {path}")
        return resolved

    async def mount(self, fragment: MountManifest) -> None:
        for path, entry in fragment.items():
            target = self._resolve_path(path)
            if isinstance(entry, DirectoryEntry):
                target.mkdir(exist_ok=True)
                continue
            if not target.parent.is_dir():
                raise FileNotFoundError(f"Parent directory of {path} does not exist")
            await self._write(target, entry)

    @staticmethod
    async def _write(target: Path, entry: FileEntry) -> None:
        if isinstance(entry.contents, bytes):
            async with aiofiles.open(target, "wb") as f:
                await f.write(entry.contents)
        else:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(entry.contents)

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        terminal: tuple[int, int] | None = None,
    ) -> SandboxProcess:
        root = self._require_root()
        env = os.environ.copy()
        if terminal:
            env["COLUMNS"], env["LINES"] = str(terminal[0]), str(terminal[1])

        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=str(root),
            env=env,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        handle = LocalProcess(process, command)
        handle.size = terminal
        self._processes.append(handle)
        logger.debug(f"Spawned {command} {' '.join(args)} (pid {process.pid})")
        return handle

    async def read_file(self, path: str) -> str:
        target = self._resolve_path(path)
        async with aiofiles.open(target, "r", encoding="utf-8") as f:
            content: str = await f.read()
        return content

    async def write_file(self, path: str, contents: str | bytes) -> None:
        target = self._resolve_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await self._write(target, FileEntry(contents=contents))

    def on(self, event: Literal["server-ready"], callback: ServerReadyCallback) -> Unsubscribe:
        if event != "server-ready":
            raise ValueError(f"Unsupported event: {event}")
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit_server_ready(self, port: int, host: str) -> None:
        for callback in list(self._listeners):
            try:
                callback(port, host)
            except Exception as e:
                logger.error(f"server-ready listener failed: {e}")

    async def _watch_ports(self) -> None:
        """
        Emit server-ready each time a watched port starts accepting connections.

        Ports already taken at boot belong to someone else and only count once they close and reopen.
        """
        try:
            for port in sorted(self.ports):
                if await _is_port_open(LOCAL_HOST, port):
                    self._open_ports.add(port)
                    logger.warning(f"Port {port} was already in use at boot; waiting for it to be released")
            while True:
                await asyncio.sleep(self.config.server_poll_interval)
                for port in sorted(self.ports):
                    is_open = await _is_port_open(LOCAL_HOST, port)
                    if is_open and port not in self._open_ports:
                        self._open_ports.add(port)
                        logger.info(f"Port {port} is accepting connections")
                        self._emit_server_ready(port, f"http://{LOCAL_HOST}")
                    elif not is_open:
                        self._open_ports.discard(port)
        except asyncio.CancelledError:
            logger.debug("Port watcher cancelled")
            raise

    async def teardown(self) -> None:
        """
        Stop the port watcher, reap processes and delete the sandbox directory.
        """
        if self._watcher and not self._watcher.done():
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
        self._watcher = None

        for process in self._processes:
            try:
                await process.terminate()
            except Exception as e:
                logger.warning(f"Error terminating {process.command}: {e}")
        self._processes.clear()
        self._listeners.clear()
        self._open_ports.clear()

        if self.root:
            logger.info(f"Removing local sandbox {self.root}")
            shutil.rmtree(self.root, ignore_errors=True)
            self.root = None
        else:
            logger.warning("Attempted to tear down a sandbox that was never booted")

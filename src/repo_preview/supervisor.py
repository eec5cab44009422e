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
from typing import Callable, Sequence

from loguru import logger

from repo_preview.config import PreviewConfig
from repo_preview.events import EventBus
from repo_preview.exceptions import InstallError, ServerStartError
from repo_preview.runtime import SandboxProcess, SandboxRuntime


class SupervisedProcess:
    """A spawned process whose output is being piped into the event bus."""

    def __init__(self, tag: str, handle: SandboxProcess, pipe: asyncio.Task[None]):
        self.tag = tag
        self.handle = handle
        self.pipe = pipe
        self.exit_code: int | None = None

    async def wait(self) -> int:
        """Wait for exit and for the remaining output to be logged."""
        self.exit_code = await self.handle.wait()
        try:
            await self.pipe
        except asyncio.CancelledError:
            pass
        return self.exit_code


class ShellHandle:
    """An interactive shell. Input is forwarded verbatim, output goes to the display."""

    def __init__(self, process: SandboxProcess, display: asyncio.Task[None]):
        self.process = process
        self._display = display

    async def write(self, data: str) -> None:
        await self.process.write(data)

    async def run_command(self, command: str) -> None:
        await self.process.write(f"{command}\n")

    async def resize(self, cols: int, rows: int) -> None:
        await self.process.resize(cols, rows)

    async def close(self) -> None:
        if not self._display.done():
            self._display.cancel()
            try:
                await self._display
            except asyncio.CancelledError:
                pass


class ProcessSupervisor:
    """Spawns sandbox processes and streams their output into the session log."""

    def __init__(self, runtime: SandboxRuntime, bus: EventBus, config: PreviewConfig | None = None):
        self.runtime = runtime
        self.bus = bus
        self.config = config or PreviewConfig()
        self._tasks: set[asyncio.Task[None]] = set()

    def _track(self, task: asyncio.Task[None]) -> asyncio.Task[None]:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def spawn(self, command: str, args: Sequence[str] = (), tag: str | None = None) -> SupervisedProcess:
        """Spawn a process and start streaming its output.

        Args:
            command: The executable to run.
            args: Arguments for the executable.
            tag: Source tag for log entries. Defaults to the command line.

        Returns:
            SupervisedProcess: Handle to wait on. Output is logged as it arrives.
        """
        tag = tag or " ".join([command, *args])
        handle = await self.runtime.spawn(command, list(args))
        pipe = self._track(asyncio.create_task(self._pipe(handle, tag)))
        return SupervisedProcess(tag, handle, pipe)

    async def _pipe(self, handle: SandboxProcess, tag: str) -> None:
        try:
            async for chunk in handle.output():
                text = chunk.rstrip("\n")
                if text:
                    self.bus.emit(text, source=tag)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.bus.emit(f"Output stream of {tag} failed: {e}", source=tag, level="WARNING")

    async def run(self, command: str, args: Sequence[str] = (), tag: str | None = None) -> int:
        process = await self.spawn(command, args, tag)
        code = await process.wait()
        logger.debug(f"{process.tag} exited with code {code}")
        return code

    async def list_files(self, path: str = ".") -> int:
        args = ["-la"] if path in ("", ".") else ["-la", path]
        return await self.run("ls", args, tag="ls")

    async def install(self) -> int:
        """Run the dependency install command.

        A non-zero exit is logged as a warning and returned, never raised:
        the dev server is started regardless.
        """
        command, *args = self.config.install_command
        self.bus.emit("Installing dependencies (this may take a few minutes)...")
        try:
            code = await self.run(command, args, tag=" ".join(self.config.install_command))
        except (OSError, RuntimeError) as e:
            self.bus.emit(f"Warning: could not run dependency install: {e}", level="WARNING")
            return -1

        if code != 0:
            self.bus.emit(
                f"Warning: {InstallError(code)}. Trying to start the server anyway.",
                level="WARNING",
            )
        else:
            self.bus.emit("Dependencies installed successfully")
        return code

    async def start_dev_server(self) -> SupervisedProcess:
        """Start the dev server bound to all interfaces on the fixed port. Never awaited to completion.

        Raises:
            ServerStartError: If the process cannot be spawned.
        """
        command, *args = self.config.resolved_dev_server_command()
        self.bus.emit(f"Starting development server on {self.config.dev_server_host}:{self.config.dev_server_port}...")
        try:
            return await self.spawn(command, args, tag="dev server")
        except (OSError, RuntimeError) as e:
            raise ServerStartError(f"Could not start dev server: {e}") from e

    async def open_shell(
        self,
        on_output: Callable[[str], None] | None = None,
        cols: int | None = None,
        rows: int | None = None,
    ) -> ShellHandle:
        """Spawn an interactive shell.

        Args:
            on_output: Terminal display sink. Defaults to the session log.
            cols: Initial terminal width.
            rows: Initial terminal height.
        """
        command, *args = self.config.shell_command
        size = (cols or self.config.terminal_cols, rows or self.config.terminal_rows)
        process = await self.runtime.spawn(command, args, terminal=size)
        sink = on_output or (lambda data: self.bus.emit(data, source="shell"))
        display = self._track(asyncio.create_task(self._forward(process, sink)))
        return ShellHandle(process, display)

    @staticmethod
    async def _forward(process: SandboxProcess, sink: Callable[[str], None]) -> None:
        try:
            async for chunk in process.output():
                sink(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Shell output stream failed: {e}")

    async def close(self) -> None:
        """Stop all output pipes. The processes themselves are left to the runtime."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

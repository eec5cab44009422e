# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Literal, Sequence

from repo_preview.models import MountManifest

ServerReadyCallback = Callable[[int, str], None]
Unsubscribe = Callable[[], None]


class SandboxProcess(ABC):
    """
    A process spawned inside the sandbox.
    """

    @abstractmethod
    def output(self) -> AsyncIterator[str]:
        """Stream output chunks as they are produced.

        Yields:
            str: Decoded output chunks (stdout and stderr combined), ending when the process closes them.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit.

        Returns:
            int: The exit code.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write(self, data: str) -> None:
        """Write data verbatim to the process input.

        Raises:
            RuntimeError: If the process input is closed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def resize(self, cols: int, rows: int) -> None:
        """Tell the process its terminal dimensions changed."""
        pass  # pragma: no cover


class SandboxRuntime(ABC):
    """
    Abstract base class for sandbox runtimes.
    The mount orchestrator and process supervisor depend only on this contract.
    """

    @abstractmethod
    async def boot(self) -> None:
        """Boot the environment.

        Raises:
            RuntimeError: If the sandbox fails to boot.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def mount(self, fragment: MountManifest) -> None:
        """Mount a manifest fragment into the sandbox file system.

        Args:
            fragment: Entries to create. A nested entry's parent directory must already exist.

        Raises:
            RuntimeError: If the sandbox is not booted.
            FileNotFoundError: If a parent directory is missing.
            OSError: If the entry cannot be written.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        terminal: tuple[int, int] | None = None,
    ) -> SandboxProcess:
        """Start a process inside the sandbox.

        Args:
            command: The executable to run.
            args: Arguments for the executable.
            terminal: Optional (cols, rows) for interactive processes.

        Returns:
            SandboxProcess: Handle exposing output, exit code and input.

        Raises:
            RuntimeError: If the sandbox is not booted.
            OSError: If the process cannot be started.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read a text file from the sandbox.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_file(self, path: str, contents: str | bytes) -> None:
        """Write a file into the sandbox, replacing any previous contents."""
        pass  # pragma: no cover

    @abstractmethod
    def on(self, event: Literal["server-ready"], callback: ServerReadyCallback) -> Unsubscribe:
        """Register a listener for runtime events.

        The 'server-ready' event fires with (port, host) each time a server
        inside the sandbox starts accepting connections.

        Returns:
            Unsubscribe: Call to stop receiving the event.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def teardown(self) -> None:
        """Release the sandbox. Running processes are left to the runtime to reap."""
        pass  # pragma: no cover

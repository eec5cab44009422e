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
import threading
from typing import Any, Callable

from loguru import logger

from repo_preview.models import LogEntry, SessionStatus


class SessionObserver:
    """Receives session events. Subclass and override what you need."""

    def on_log(self, entry: LogEntry) -> None:
        pass

    def on_status(self, status: SessionStatus, reason: str | None) -> None:
        pass

    def on_server_ready(self, url: str) -> None:
        pass


class ReadinessChannel:
    """Holds the current preview URL and wakes anyone waiting for it.

    Publishing again overwrites the URL (last write wins).
    """

    def __init__(self) -> None:
        self._url: str | None = None
        self._event = asyncio.Event()

    @property
    def url(self) -> str | None:
        return self._url

    def publish(self, url: str) -> None:
        self._url = url
        self._event.set()

    async def wait(self, timeout: float | None = None) -> str:
        """Wait until a URL is bound and return it.

        Raises:
            TimeoutError: If nothing is published within timeout seconds.
            RuntimeError: If the channel was reset before the waiter woke up.
        """
        await asyncio.wait_for(self._event.wait(), timeout=timeout)
        if self._url is None:
            raise RuntimeError("Readiness was signalled but no preview URL is bound")
        return self._url

    def reset(self) -> None:
        self._url = None
        self._event.clear()


class EventBus:
    """Append-only session log plus status and readiness notifications.

    Appends are serialized, so entries keep emission order even when several
    process output pipes write concurrently.
    """

    def __init__(self) -> None:
        self._entries: list[LogEntry] = []
        self._observers: list[SessionObserver] = []
        self._lock = threading.Lock()
        self.ready = ReadinessChannel()

    @property
    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def messages(self) -> list[str]:
        return [entry.message for entry in self.entries]

    def emit(self, message: str, source: str = "session", level: str = "INFO") -> LogEntry:
        """Append a line to the log and notify observers.

        Args:
            message: The text to append.
            source: Component or command tag that produced the line.
            level: loguru level name.

        Returns:
            LogEntry: The appended entry.
        """
        with self._lock:
            entry = LogEntry(seq=len(self._entries), source=source, message=message, level=level)
            self._entries.append(entry)
        logger.bind(source=source).log(level, message)
        self._notify("on_log", entry)
        return entry

    def publish_status(self, status: SessionStatus, reason: str | None = None) -> None:
        self._notify("on_status", status, reason)

    def publish_ready(self, url: str) -> None:
        self.ready.publish(url)
        self._notify("on_server_ready", url)

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """Register an observer.

        Returns:
            A callable that removes the observer again.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def clear_observers(self) -> None:
        self._observers.clear()

    def _notify(self, method: str, *args: Any) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, method)(*args)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__}.{method} failed: {e}")

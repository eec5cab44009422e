# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Data models describing session state, log entries and mount results."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    BOOTING = "booting"
    FETCHING_TREE = "fetching_tree"
    CONVERTING = "converting"
    MOUNTING = "mounting"
    INSTALLING = "installing"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class MountState(str, Enum):
    IDLE = "idle"
    MOUNTING_ROOTS = "mounting_roots"
    MOUNTING_FILES = "mounting_files"
    MOUNTING_NESTED = "mounting_nested"
    VERIFYING = "verifying"
    DONE = "done"
    PARTIALLY_MOUNTED = "partially_mounted"


class LogEntry(BaseModel):
    """A single line in the session log.

    Attributes:
        seq: Position in the session log, starting at 0.
        source: The component or command tag that produced the line.
        message: The text of the line.
        level: loguru level name.
        timestamp: When the line was appended.
    """

    seq: int
    source: str
    message: str
    level: str = "INFO"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MountReport(BaseModel):
    """Per-entry outcome of a mount pass.

    Attributes:
        succeeded: Paths mounted successfully, in the order they were issued.
        failed: Path -> error message for entries that could not be mounted.
        used_scaffold: True if the fallback scaffold replaced the real tree.
        state: Final state of the mount state machine.
    """

    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    used_scaffold: bool = False
    state: MountState = MountState.IDLE

    @property
    def partial(self) -> bool:
        return bool(self.failed)


class FetchFailure(BaseModel):
    """A node that was emitted without its content or children."""

    path: str
    reason: str

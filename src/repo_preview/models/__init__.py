# src/repo_preview/models/__init__.py

"""
Data models for the repository preview pipeline.
"""

from .manifest import DirectoryEntry, FileEntry, ManifestEntry, MountManifest
from .session import FetchFailure, LogEntry, MountReport, MountState, SessionStatus
from .tree import RepoNode, RepoTree

__all__ = [
    "DirectoryEntry",
    "FetchFailure",
    "FileEntry",
    "LogEntry",
    "ManifestEntry",
    "MountManifest",
    "MountReport",
    "MountState",
    "RepoNode",
    "RepoTree",
    "SessionStatus",
]

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
repo-preview
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import PreviewConfig
from .converter import sanitize_path, to_manifest
from .events import EventBus, SessionObserver
from .factory import SandboxFactory
from .fetcher import TreeFetcher
from .models import MountManifest, MountReport, RepoNode, SessionStatus
from .orchestrator import MountOrchestrator
from .remote import GitHubClient
from .runtime import SandboxRuntime
from .runtimes.local import LocalRuntime
from .session import PreviewSession, compose_preview_url
from .session_manager import SessionManager
from .supervisor import ProcessSupervisor

__all__ = [
    "EventBus",
    "GitHubClient",
    "LocalRuntime",
    "MountManifest",
    "MountOrchestrator",
    "MountReport",
    "PreviewConfig",
    "PreviewSession",
    "ProcessSupervisor",
    "RepoNode",
    "SandboxFactory",
    "SandboxRuntime",
    "SessionManager",
    "SessionObserver",
    "SessionStatus",
    "TreeFetcher",
    "compose_preview_url",
    "sanitize_path",
    "to_manifest",
]

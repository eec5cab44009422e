# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Conversion of a fetched RepoNode tree into a sandbox mount manifest."""

import json
import re
from typing import Iterator

from loguru import logger

from repo_preview.exceptions import ConversionError
from repo_preview.models import DirectoryEntry, FileEntry, MountManifest, RepoNode

FORBIDDEN_CHARS = re.compile(r'[\\:*?"<>|]')
HIDDEN_PREFIX = "."
RESERVED_SEGMENTS = frozenset({"node_modules"})
LOCK_FILES = frozenset({"package-lock.json"})
PACKAGE_DESCRIPTOR = "package.json"
MAX_DEPTH = 64


def sanitize_path(path: str) -> str:
    """Strip leading slashes and replace characters the sandbox file system rejects with '_'."""
    return FORBIDDEN_CHARS.sub("_", path.lstrip("/"))


def _segment(node: RepoNode) -> str:
    segment = sanitize_path(node.name)
    if segment in ("", ".", "..") or "/" in segment:
        raise ConversionError(f"Cannot derive a mount path from name {node.name!r} at {node.path!r}")
    return segment


def _is_reserved(path: str) -> bool:
    return any(part in RESERVED_SEGMENTS for part in path.split("/"))


def is_excluded(path: str, name: str) -> bool:
    """True for files that must not be mounted: hidden files, lock files and dependency caches."""
    return name.startswith(HIDDEN_PREFIX) or name in LOCK_FILES or _is_reserved(path)


def _walk(tree: list[RepoNode]) -> Iterator[tuple[str, RepoNode]]:
    """Yield (sanitized cumulative path, node) depth-first, skipping reserved directories."""
    stack: list[tuple[str, int, RepoNode]] = [("", 0, node) for node in reversed(tree)]
    while stack:
        parent, level, node = stack.pop()
        if level > MAX_DEPTH:
            raise ConversionError(f"Tree deeper than {MAX_DEPTH} levels at {node.path!r}")
        segment = _segment(node)
        path = f"{parent}/{segment}" if parent else segment
        if node.is_dir and segment in RESERVED_SEGMENTS:
            continue
        yield path, node
        if node.is_dir and node.children:
            stack.extend((path, level + 1, child) for child in reversed(node.children))


def to_manifest(tree: list[RepoNode]) -> MountManifest:
    """Convert a tree into a flat manifest.

    Runs two passes over the same walk: the first emits every directory
    (empty ones included), the second emits every file that survives
    filtering. Directories therefore always precede the files inside them.

    Args:
        tree: Root nodes of the fetched repository.

    Returns:
        MountManifest: Sanitized path -> entry, directories first.

    Raises:
        ConversionError: If a node's name cannot be turned into a path segment.
    """
    manifest: MountManifest = {}

    for path, node in _walk(tree):
        if node.is_dir:
            manifest[path] = DirectoryEntry()

    for path, node in _walk(tree):
        if node.is_dir or is_excluded(path, node.name):
            continue
        if path in manifest:
            logger.warning(f"Skipping {node.path}: sanitized path {path} is already taken")
            continue
        contents = node.raw_content()
        manifest[path] = FileEntry(contents="" if contents is None else contents)

    return manifest


def has_files(manifest: MountManifest) -> bool:
    return any(isinstance(entry, FileEntry) for entry in manifest.values())


def minimal_package_json() -> str:
    return json.dumps(
        {
            "name": "nextjs-app",
            "version": "0.1.0",
            "private": True,
            "scripts": {
                "dev": "next dev",
                "build": "next build",
                "start": "next start",
            },
            "dependencies": {
                "next": "13.4.19",
                "react": "18.2.0",
                "react-dom": "18.2.0",
            },
        },
        indent=2,
    )


SCAFFOLD_PAGE = """export default function Home() {
  return (
    <div style={{ padding: '20px' }}>
      <h1>Preview unavailable</h1>
      <p>The repository could not be converted, so this minimal app is running instead.</p>
    </div>
  )
}
"""


def scaffold_manifest() -> MountManifest:
    """Minimal runnable project mounted when the real tree cannot be used."""
    return {
        "pages": DirectoryEntry(),
        PACKAGE_DESCRIPTOR: FileEntry(contents=minimal_package_json()),
        "pages/index.js": FileEntry(contents=SCAFFOLD_PAGE),
    }

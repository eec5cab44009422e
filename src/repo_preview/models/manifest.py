# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Mount manifest: a flat mapping of sanitized virtual paths to entries."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class DirectoryEntry(BaseModel):
    """A directory to create in the sandbox."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["directory"] = "directory"


class FileEntry(BaseModel):
    """A file to write into the sandbox."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    contents: str | bytes = ""


ManifestEntry = Annotated[Union[DirectoryEntry, FileEntry], Field(discriminator="kind")]

# Insertion order is meaningful: directories are emitted before the files inside them.
MountManifest = dict[str, ManifestEntry]


def depth(path: str) -> int:
    """Number of separators in a manifest key. Root-level keys have depth 0."""
    return path.count("/")


def file_paths(manifest: MountManifest) -> list[str]:
    return [path for path, entry in manifest.items() if isinstance(entry, FileEntry)]


def to_wire(manifest: MountManifest) -> dict[str, dict[str, Any]]:
    """Render the manifest in the runtime's `{file: {contents}}` / `{directory: {}}` shape."""
    wire: dict[str, dict[str, Any]] = {}
    for path, entry in manifest.items():
        if isinstance(entry, FileEntry):
            wire[path] = {"file": {"contents": entry.contents}}
        else:
            wire[path] = {"directory": {}}
    return wire

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""In-memory model of a fetched remote repository tree."""

import base64
import binascii
from typing import Literal

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class RepoNode(BaseModel):
    """One file-system entry of the remote repository.

    Attributes:
        name: Leaf name of the entry.
        path: Full forward-slash path from the repository root.
        kind: Either 'file' or 'directory'.
        content: File body as fetched. None for directories and failed fetches.
        encoding: 'utf-8' for text bodies, 'base64' for binary bodies.
        children: Ordered entries of a directory. None for files.
    """

    name: str = Field(..., min_length=1)
    path: str
    kind: Literal["file", "directory"]
    content: str | None = None
    encoding: Literal["utf-8", "base64"] = "utf-8"
    children: list["RepoNode"] | None = None

    @model_validator(mode="after")
    def _check_kind(self) -> "RepoNode":
        if self.kind == "file" and self.children is not None:
            raise ValueError(f"File node {self.path} cannot have children")
        if self.kind == "directory" and self.content is not None:
            raise ValueError(f"Directory node {self.path} cannot have content")
        return self

    @property
    def is_dir(self) -> bool:
        return self.kind == "directory"

    @classmethod
    def from_bytes(cls, name: str, path: str, body: bytes) -> "RepoNode":
        """Build a file node, keeping text as text and anything else base64 encoded."""
        try:
            return cls(name=name, path=path, kind="file", content=body.decode("utf-8"))
        except UnicodeDecodeError:
            encoded = base64.b64encode(body).decode("ascii")
            return cls(name=name, path=path, kind="file", content=encoded, encoding="base64")

    def raw_content(self) -> str | bytes | None:
        """The body in its mountable form: text as str, binary as bytes."""
        if self.content is None or self.encoding == "utf-8":
            return self.content
        try:
            return base64.b64decode(self.content)
        except binascii.Error:
            return self.content


RepoTree = TypeAdapter(list[RepoNode])


def iter_nodes(tree: list[RepoNode]):
    """Yield every node of the tree in depth-first pre-order."""
    stack = list(reversed(tree))
    while stack:
        node = stack.pop()
        yield node
        if node.children:
            stack.extend(reversed(node.children))


def find_node(tree: list[RepoNode], path: str) -> RepoNode | None:
    wanted = path.strip("/")
    for node in iter_nodes(tree):
        if node.path.strip("/") == wanted:
            return node
    return None


def update_content(tree: list[RepoNode], path: str, content: str) -> bool:
    """Replace the content of the file at path in place. Returns False if there is no such file."""
    node = find_node(tree, path)
    if node is None or node.is_dir:
        return False
    node.content = content
    node.encoding = "utf-8"
    return True

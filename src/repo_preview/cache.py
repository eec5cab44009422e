# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from loguru import logger
from pydantic import ValidationError

from repo_preview.models import RepoNode, RepoTree


class TreeCache:
    """In-memory cache of fetched trees keyed by `owner/repo`.

    Trees are stored verbatim as JSON, so callers always get a fresh copy they
    may edit. Entries are only removed by an explicit invalidate or clear.
    """

    def __init__(self) -> None:
        self._entries: dict[str, bytes] = {}

    @staticmethod
    def key(owner: str, repo: str) -> str:
        return f"{owner}/{repo}"

    def get(self, owner: str, repo: str) -> list[RepoNode] | None:
        raw = self._entries.get(self.key(owner, repo))
        if raw is None:
            return None
        try:
            return RepoTree.validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry for {self.key(owner, repo)}: {e}")
            self._entries.pop(self.key(owner, repo), None)
            return None

    def put(self, owner: str, repo: str, tree: list[RepoNode]) -> None:
        self._entries[self.key(owner, repo)] = RepoTree.dump_json(tree)
        logger.debug(f"Cached tree for {self.key(owner, repo)}")

    def invalidate(self, owner: str, repo: str) -> bool:
        return self._entries.pop(self.key(owner, repo), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

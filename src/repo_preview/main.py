# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from repo_preview.config import PreviewConfig
from repo_preview.converter import to_manifest
from repo_preview.exceptions import ConversionError, FetchError
from repo_preview.fetcher import TreeFetcher
from repo_preview.models import RepoTree
from repo_preview.remote import GitHubClient

config = PreviewConfig()

# Initialize MCP Server
mcp = FastMCP("repo-preview")


@mcp.tool()  # type: ignore[misc]
async def fetch_repository_tree(owner: str, repo: str) -> list[TextContent]:
    """
    Fetch the file tree of a GitHub repository, including file contents.
    Returns the tree as JSON, followed by any entries that could not be fetched.
    """
    async with GitHubClient(config) as client:
        fetcher = TreeFetcher(client, config)
        tree = await fetcher.fetch_tree(owner, repo)

    output = [TextContent(type="text", text=RepoTree.dump_json(tree, exclude_none=True).decode("utf-8"))]
    if fetcher.rate_limited:
        output.append(TextContent(type="text", text="Warning: GitHub rate limit exhausted; tree is incomplete."))
    for failure in fetcher.failures:
        output.append(TextContent(type="text", text=f"Failed: {failure.path} ({failure.reason})"))
    return output


@mcp.tool()  # type: ignore[misc]
async def check_repository(owner: str, repo: str) -> str:
    """
    Check whether a GitHub repository exists and is readable.
    """
    try:
        async with GitHubClient(config) as client:
            await client.check_repository(owner, repo)
    except FetchError as e:
        return f"Error checking repository: {e!s}"
    return f"Repository {owner}/{repo} is accessible."


@mcp.tool()  # type: ignore[misc]
async def list_mount_paths(owner: str, repo: str) -> list[str]:
    """
    Fetch a repository and list the sandbox paths its files would be mounted at.
    """
    async with GitHubClient(config) as client:
        tree = await TreeFetcher(client, config).fetch_tree(owner, repo)
    try:
        return list(to_manifest(tree))
    except ConversionError as e:
        return [f"Error converting repository: {e!s}"]


def main() -> None:
    """Entry point for the MCP server."""
    import repo_preview.utils.logger  # noqa: F401

    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()

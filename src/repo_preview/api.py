# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""HTTP surface consumed by the UI layer."""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from loguru import logger

from repo_preview.config import PreviewConfig
from repo_preview.exceptions import (
    FetchError,
    RateLimitError,
    RepositoryAccessDeniedError,
    RepositoryNotFoundError,
)
from repo_preview.fetcher import TreeFetcher
from repo_preview.models import RepoNode
from repo_preview.remote import GitHubClient, RepositoryClient


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    import repo_preview.utils.logger  # noqa: F401

    logger.info("repo-preview API starting")
    yield
    logger.info("repo-preview API stopped")


app = FastAPI(title="repo-preview", lifespan=lifespan)


@lru_cache
def get_config() -> PreviewConfig:
    return PreviewConfig()


async def get_client(config: PreviewConfig = Depends(get_config)) -> AsyncIterator[RepositoryClient]:
    async with GitHubClient(config) as client:
        yield client


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/repo/{owner}/{repo}", response_model=list[RepoNode], response_model_exclude_none=True)
async def get_repository_tree(
    owner: str,
    repo: str,
    client: RepositoryClient = Depends(get_client),
    config: PreviewConfig = Depends(get_config),
) -> list[RepoNode]:
    """
    Return the repository tree. Per-entry fetch failures leave gaps rather than failing the request.
    """
    fetcher = TreeFetcher(client, config)
    tree = await fetcher.fetch_tree(owner, repo)
    if not tree and fetcher.rate_limited:
        raise HTTPException(status_code=429, detail="GitHub rate limit exhausted")
    if not tree and fetcher.failures:
        logger.error(f"Failed to fetch repository data for {owner}/{repo}: {fetcher.failures[0].reason}")
        raise HTTPException(status_code=502, detail="Failed to fetch repository data")
    return tree


@app.get("/repo/{owner}/{repo}/check")
async def check_repository(
    owner: str,
    repo: str,
    client: RepositoryClient = Depends(get_client),
) -> JSONResponse:
    """
    Report whether the repository exists and is readable.
    """
    if not owner.strip() or not repo.strip():
        return JSONResponse({"error": "Owner and repo are required"}, status_code=400)
    try:
        await client.check_repository(owner, repo)
    except RepositoryNotFoundError:
        return JSONResponse({"error": "Repository not found"}, status_code=404)
    except RepositoryAccessDeniedError:
        return JSONResponse({"error": "Access denied to repository"}, status_code=403)
    except RateLimitError:
        return JSONResponse({"error": "GitHub rate limit exhausted"}, status_code=429)
    except FetchError as e:
        logger.error(f"Error checking repository {owner}/{repo}: {e}")
        return JSONResponse({"error": "Failed to check repository"}, status_code=500)
    return JSONResponse({"exists": True})

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Error taxonomy for the fetch, convert, mount and run pipeline."""


class PreviewError(Exception):
    """Base class for all repo-preview errors."""


class FetchError(PreviewError):
    """A request against the remote repository failed.

    Attributes:
        path: The repository path the request was for, if any.
        status_code: The HTTP status code returned by the remote, if any.
    """

    def __init__(self, message: str, path: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class RateLimitError(FetchError):
    """The remote API quota is exhausted. Callers must not retry."""

    def __init__(self, message: str, path: str | None = None, reset_at: int | None = None):
        super().__init__(message, path=path, status_code=403)
        self.reset_at = reset_at


class RepositoryNotFoundError(FetchError):
    """The repository does not exist (or is invisible to the token)."""


class RepositoryAccessDeniedError(FetchError):
    """The repository exists but the token may not read it."""


class ConversionError(PreviewError):
    """The tree cannot be turned into a mount manifest."""


class MountError(PreviewError):
    """A single manifest entry could not be mounted."""


class InstallError(PreviewError):
    """The dependency install process exited with a non-zero code."""

    def __init__(self, exit_code: int):
        super().__init__(f"Dependency install exited with code {exit_code}")
        self.exit_code = exit_code


class ServerStartError(PreviewError):
    """The dev server could not be started or exited before becoming ready."""


class SaveError(PreviewError):
    """Edited file content could not be written back to the sandbox."""

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
from itertools import groupby

from loguru import logger

from repo_preview.config import PreviewConfig
from repo_preview.converter import (
    PACKAGE_DESCRIPTOR,
    has_files,
    minimal_package_json,
    scaffold_manifest,
    to_manifest,
)
from repo_preview.events import EventBus
from repo_preview.exceptions import ConversionError, MountError
from repo_preview.models import DirectoryEntry, ManifestEntry, MountManifest, MountReport, MountState, RepoNode
from repo_preview.models.manifest import depth
from repo_preview.runtime import SandboxRuntime
from repo_preview.supervisor import ProcessSupervisor

MountBatch = list[tuple[str, ManifestEntry]]


def plan_mounts(manifest: MountManifest) -> list[tuple[MountState, MountBatch]]:
    """Order manifest entries into mount batches.

    Root directories come first, then root files, then one batch per depth
    level (shallow before deep), so a parent directory always exists before
    anything inside it is mounted. Entries within a batch keep manifest order.
    """
    items = list(manifest.items())
    root_dirs = [(p, e) for p, e in items if depth(p) == 0 and isinstance(e, DirectoryEntry)]
    root_files = [(p, e) for p, e in items if depth(p) == 0 and not isinstance(e, DirectoryEntry)]
    nested = sorted((item for item in items if depth(item[0]) > 0), key=lambda item: depth(item[0]))

    plan: list[tuple[MountState, MountBatch]] = [
        (MountState.MOUNTING_ROOTS, root_dirs),
        (MountState.MOUNTING_FILES, root_files),
    ]
    for _, level in groupby(nested, key=lambda item: depth(item[0])):
        plan.append((MountState.MOUNTING_NESTED, list(level)))
    return plan


class MountOrchestrator:
    """Mounts a manifest into the sandbox entry by entry and prepares it for install.

    A failed entry is logged and recorded in the MountReport; the sequence
    always continues.
    """

    def __init__(
        self,
        runtime: SandboxRuntime,
        supervisor: ProcessSupervisor,
        bus: EventBus,
        config: PreviewConfig | None = None,
    ):
        self.runtime = runtime
        self.supervisor = supervisor
        self.bus = bus
        self.config = config or PreviewConfig()
        self.state = MountState.IDLE

    def prepare(self, tree: list[RepoNode]) -> tuple[MountManifest, bool]:
        """Convert the tree, substituting the scaffold if that fails or leaves no files.

        Returns:
            tuple[MountManifest, bool]: The manifest to mount and whether it is the scaffold.
        """
        self.bus.emit("Preparing files for mounting...")
        try:
            manifest = to_manifest(tree)
        except ConversionError as e:
            self.bus.emit(f"Error processing repository files: {e}", level="ERROR")
            self.bus.emit("Falling back to minimal Next.js project...", level="WARNING")
            return scaffold_manifest(), True

        if not has_files(manifest):
            self.bus.emit("No mountable files in repository. Falling back to minimal Next.js project...", level="WARNING")
            return scaffold_manifest(), True

        self.bus.emit(f"Processed {len(manifest)} files and directories")
        return manifest, False

    async def mount(self, manifest: MountManifest) -> MountReport:
        """Mount every entry in dependency order.

        Args:
            manifest: The manifest to mount.

        Returns:
            MountReport: Which entries succeeded and which failed.
        """
        report = MountReport()
        limit = asyncio.Semaphore(max(1, self.config.mount_concurrency))
        self.bus.emit("Mounting files...")

        for state, batch in plan_mounts(manifest):
            self.state = state
            errors = await asyncio.gather(*(self._mount_entry(path, entry, limit) for path, entry in batch))
            for (path, entry), error in zip(batch, errors):
                if error is None:
                    report.succeeded.append(path)
                    if isinstance(entry, DirectoryEntry):
                        self.bus.emit(f"Mounted directory: {path}", level="DEBUG")
                else:
                    report.failed[path] = error
                    self.bus.emit(f"Skipped item {path}: {error}", level="WARNING")

        report.state = MountState.PARTIALLY_MOUNTED if report.failed else MountState.DONE
        self.state = report.state
        self.bus.emit(f"Mounted {len(report.succeeded)} entries, {len(report.failed)} failed")
        return report

    async def _mount_entry(self, path: str, entry: ManifestEntry, limit: asyncio.Semaphore) -> str | None:
        async with limit:
            try:
                await self.runtime.mount({path: entry})
                return None
            except Exception as e:
                error = MountError(f"{type(e).__name__}: {e}")
                logger.debug(f"Mount of {path} failed: {error}")
                return str(error)

    async def verify(self) -> None:
        """List the sandbox root into the log. Failures are logged, not raised."""
        previous = self.state
        self.state = MountState.VERIFYING
        self.bus.emit("Verifying file mount...")
        try:
            code = await self.supervisor.list_files()
            if code != 0:
                self.bus.emit(f"Listing files exited with code {code}", level="WARNING")
        except Exception as e:
            self.bus.emit(f"Could not verify mounted files: {e}", level="WARNING")
        finally:
            self.state = previous

    async def ensure_package_descriptor(self) -> bool:
        """Synthesize a minimal package descriptor if the root has none.

        Returns:
            bool: True if a descriptor had to be created.
        """
        try:
            await self.runtime.read_file(PACKAGE_DESCRIPTOR)
            self.bus.emit(f"{PACKAGE_DESCRIPTOR} found, proceeding with installation")
            return False
        except FileNotFoundError:
            self.bus.emit(f"{PACKAGE_DESCRIPTOR} not found, creating minimal {PACKAGE_DESCRIPTOR}", level="WARNING")

        try:
            await self.runtime.write_file(PACKAGE_DESCRIPTOR, minimal_package_json())
        except Exception as e:
            self.bus.emit(f"Could not write {PACKAGE_DESCRIPTOR}: {e}", level="ERROR")
        return True

    async def materialize(self, manifest: MountManifest, used_scaffold: bool = False) -> MountReport:
        """Mount, verify and make sure the project is installable.

        Args:
            manifest: The manifest returned by prepare().
            used_scaffold: Whether the manifest is the fallback scaffold.

        Returns:
            MountReport: The per-entry outcome of the mount pass.
        """
        report = await self.mount(manifest)
        report.used_scaffold = used_scaffold
        await self.verify()
        await self.ensure_package_descriptor()
        return report

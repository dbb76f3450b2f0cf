# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

import asyncio
import secrets
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

SCRATCH_PREFIX = "_run_"
SCRATCH_SUFFIX = ".py"


@dataclass(frozen=True)
class RunScratch:
    """Ephemeral paths owned by a single run."""

    run_id: str
    program_path: Path
    artifact_dir: Path

    @classmethod
    def allocate(cls, workspace: Path, artifacts_root: Path) -> "RunScratch":
        """Pick unique paths for a run. Nothing is created on disk."""
        run_id = f"{time.strftime('%Y%m%d%H%M%S')}_{time.time_ns() % 1_000_000_000:09d}_{secrets.token_hex(4)}"
        return cls(
            run_id=run_id,
            program_path=workspace / f"{SCRATCH_PREFIX}{run_id}{SCRATCH_SUFFIX}",
            artifact_dir=artifacts_root / f"{SCRATCH_PREFIX}{run_id}",
        )


class LifecycleReaper:
    """Removes per-run scratch state and sweeps orphans left by interrupted runs."""

    def __init__(self, workspace: Path, artifacts_root: Path, stale_age: float = 3600.0):
        """Initializes the LifecycleReaper.

        Args:
            workspace: Directory holding scratch programs.
            artifacts_root: Directory holding per-run artifact directories.
            stale_age: Age in seconds after which foreign scratch state is considered orphaned.
        """
        self.workspace = workspace
        self.artifacts_root = artifacts_root
        self.stale_age = stale_age

    async def cleanup(self, scratch: RunScratch) -> None:
        """Tear down a run's scratch state. Never raises.

        The program file, the artifact directory and the orphan sweep are handled
        concurrently; a failure in one does not stop the others.
        """
        tasks = {
            "scratch program": asyncio.to_thread(_remove_file, scratch.program_path),
            "artifact directory": asyncio.to_thread(_remove_tree, scratch.artifact_dir),
            "orphan sweep": asyncio.to_thread(self.sweep_stale, scratch.run_id),
        }
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for name, result in zip(tasks, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(f"Cleanup of {name} for run {scratch.run_id} failed: {result}")

    def sweep_stale(self, current_run_id: str | None = None) -> int:
        """Delete scratch programs and artifact directories older than the staleness threshold.

        Args:
            current_run_id: Run whose scratch state must not be touched.

        Returns:
            int: Number of entries removed.
        """
        cutoff = time.time() - self.stale_age
        skip = f"{SCRATCH_PREFIX}{current_run_id}" if current_run_id else None
        removed = 0

        candidates: list[Path] = []
        if self.workspace.is_dir():
            candidates.extend(self.workspace.glob(f"{SCRATCH_PREFIX}*{SCRATCH_SUFFIX}"))
        if self.artifacts_root.is_dir():
            candidates.extend(p for p in self.artifacts_root.glob(f"{SCRATCH_PREFIX}*") if p.is_dir())

        for path in candidates:
            if skip and path.name.startswith(skip):
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                if path.is_dir():
                    _remove_tree(path)
                else:
                    _remove_file(path)
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove orphaned scratch state {path}: {e}")

        if removed:
            logger.info(f"Removed {removed} orphaned scratch entries")
        return removed


def _remove_file(path: Path) -> None:
    path.unlink(missing_ok=True)


def _remove_tree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)

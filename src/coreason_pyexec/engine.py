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
import os
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_pyexec.artifacts import ArtifactCollector
from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.diagnostics import classify
from coreason_pyexec.environment import Environment, EnvironmentManager
from coreason_pyexec.instrumentation import inject
from coreason_pyexec.models import TIMEOUT_EXIT_CODE, ExecutionOutcome, ResourceLimits
from coreason_pyexec.process import ProcessResult, run_process
from coreason_pyexec.reaper import LifecycleReaper, RunScratch


class ExecutionEngine:
    """Runs instrumented snippets in the managed environment.

    A run goes through the environment manager, the injector, the child process,
    the artifact collector and finally the reaper, strictly in that order. The
    reaper runs on every exit path.
    """

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        environments: EnvironmentManager | None = None,
        collector: ArtifactCollector | None = None,
        reaper: LifecycleReaper | None = None,
    ):
        self.config = config or ExecutorConfig()
        self.workspace = self.config.workspace_root.resolve()
        self.artifacts_root = self.config.artifacts_root.resolve()
        self.environments = environments or EnvironmentManager(self.config)
        self.collector = collector or ArtifactCollector(
            max_artifacts=self.config.max_artifacts,
            min_bytes=self.config.min_artifact_bytes,
        )
        self.reaper = reaper or LifecycleReaper(
            self.workspace,
            self.artifacts_root,
            stale_age=self.config.stale_scratch_age,
        )

    @asynccontextmanager
    async def scratch(self) -> AsyncIterator[RunScratch]:
        """Allocate per-run scratch paths and release them on every exit path."""
        scratch = RunScratch.allocate(self.workspace, self.artifacts_root)
        try:
            yield scratch
        finally:
            # Shielded so a cancelled run still removes its files
            await asyncio.shield(self.reaper.cleanup(scratch))

    async def run(
        self,
        code: str,
        limits: ResourceLimits | None = None,
        setup_environment: bool = False,
        requirements: list[str] | None = None,
    ) -> ExecutionOutcome:
        """Execute a snippet and return its classified outcome.

        Environment-level errors are raised before any process is spawned.
        Execution-level failures are returned as outcomes, never raised.

        Args:
            code: The Python source to run.
            limits: Resource ceilings. Defaults derive from the configuration.
            setup_environment: Recreate the environment before running.
            requirements: Packages to install before running.

        Returns:
            ExecutionOutcome: Output, exit metadata, artifacts and diagnosis.

        Raises:
            ToolchainMissing: If no base interpreter is available.
            EnvironmentFailure: If the environment cannot be created or repaired.
            PackageNotAllowed: If a requirement is rejected.
            InstallFailure: If installing requirements fails.
        """
        limits = limits or ResourceLimits.from_config(self.config)

        async with self.scratch() as scratch:
            if setup_environment:
                env = await self.environments.reset()
            else:
                env = await self.environments.ensure()
            if requirements:
                await self.environments.install_packages(requirements, env)

            program = inject(code, scratch.artifact_dir)
            self.workspace.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(scratch.program_path, "w", encoding="utf-8") as f:
                await f.write(program)

            async with self.environments.shared(env):
                logger.info(f"Executing run {scratch.run_id} with timeout {limits.timeout}s")
                result = await run_process(
                    [env.interpreter_path, scratch.program_path],
                    cwd=self.workspace,
                    timeout=limits.timeout,
                    max_output_bytes=limits.max_output_bytes,
                    max_memory_mb=limits.max_memory_mb,
                    env=self._child_env(env),
                )

            outcome = self._to_outcome(result)
            outcome.artifacts = await self.collector.collect(scratch.artifact_dir)
            if not outcome.ok:
                outcome.diagnosis = classify(outcome, timeout=limits.timeout)
                logger.warning(f"Run {scratch.run_id} ended with status {outcome.status}: {outcome.diagnosis.message}")
            else:
                logger.info(f"Run {scratch.run_id} succeeded in {outcome.execution_duration:.3f}s")
            return outcome

    def _child_env(self, env: Environment) -> dict[str, str]:
        child = dict(os.environ)
        child["VIRTUAL_ENV"] = str(env.root)
        child["PATH"] = os.pathsep.join([str(env.bin_dir), child.get("PATH", "")])
        child["MPLBACKEND"] = "Agg"
        child["PYTHONUNBUFFERED"] = "1"
        child["PYTHONIOENCODING"] = "utf-8"
        child.pop("PYTHONHOME", None)
        return child

    @staticmethod
    def _to_outcome(result: ProcessResult) -> ExecutionOutcome:
        if result.timed_out:
            return ExecutionOutcome(
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=TIMEOUT_EXIT_CODE,
                signal=int(getattr(signal, "SIGKILL", signal.SIGTERM)),
                killed_by_timeout=True,
                truncated=result.truncated,
                execution_duration=result.duration,
            )
        return ExecutionOutcome(
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=None if result.signal is not None else result.returncode,
            signal=result.signal,
            truncated=result.truncated,
            execution_duration=result.duration,
        )

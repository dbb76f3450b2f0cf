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

import anyio
from loguru import logger

from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.engine import ExecutionEngine
from coreason_pyexec.environment import EnvironmentManager
from coreason_pyexec.models import ExecutionOutcome, InstallReport, ResourceLimits
from coreason_pyexec.utils.audit import AuditLogger


class SandboxService:
    """Async-native service exposing the core operations to the tool layer.

    Owns the environment manager and execution engine, and a background reaper
    that periodically sweeps scratch state orphaned by interrupted runs.
    """

    def __init__(self, config: ExecutorConfig | None = None):
        """Initializes the SandboxService.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
        """
        self.config = config or ExecutorConfig()
        self.environments = EnvironmentManager(self.config)
        self.engine = ExecutionEngine(self.config, environments=self.environments)
        self.audit = AuditLogger(enabled=self.config.enable_audit_logging)
        self._reaper_task: asyncio.Task[None] | None = None

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Background task that removes orphaned scratch programs and artifact directories."""
        logger.info("Scratch reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                await asyncio.to_thread(self.engine.reaper.sweep_stale)
        except asyncio.CancelledError:
            logger.info("Scratch reaper cancelled")
        except Exception as e:
            logger.error(f"Scratch reaper crashed: {e}")

    async def execute_code(
        self,
        code: str,
        setup_environment: bool = False,
        requirements: list[str] | None = None,
        limits: ResourceLimits | None = None,
    ) -> ExecutionOutcome:
        """Execute a snippet in the managed environment.

        Args:
            code: The Python source to run.
            setup_environment: Recreate the environment before running.
            requirements: Packages to install before running.
            limits: Optional per-call resource ceilings.

        Returns:
            ExecutionOutcome: The classified outcome of the run.
        """
        await self._start_reaper_if_needed()
        self.audit.log_pre_execution(code, requirements)
        return await self.engine.run(
            code,
            limits=limits,
            setup_environment=setup_environment,
            requirements=requirements,
        )

    async def install_packages(self, names: list[str]) -> InstallReport:
        """Install packages into the managed environment."""
        await self._start_reaper_if_needed()
        self.audit.log_environment_change("install", names)
        return await self.environments.install_packages(names)

    async def list_packages(self) -> str:
        """List packages installed in the managed environment."""
        return await self.environments.list_packages()

    async def reset_environment(self) -> str:
        """Destroy and recreate the managed environment."""
        self.audit.log_environment_change("reset")
        await self.environments.reset()
        return "Virtual environment reset successfully"

    async def shutdown(self) -> None:
        """Stop the background reaper and run a final sweep."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
        self._reaper_task = None

        try:
            await asyncio.to_thread(self.engine.reaper.sweep_stale)
        except OSError as e:
            logger.warning(f"Final scratch sweep failed: {e}")


class Sandbox:
    """Sync facade for SandboxService.

    Each call runs the async service through anyio.run. The background reaper is
    not started; every run still cleans up after itself and sweeps orphans.
    """

    def __init__(self, config: ExecutorConfig | None = None):
        self._async = SandboxService(config)

    def execute_code(
        self,
        code: str,
        setup_environment: bool = False,
        requirements: list[str] | None = None,
        limits: ResourceLimits | None = None,
    ) -> ExecutionOutcome:
        self._async.audit.log_pre_execution(code, requirements)
        return anyio.run(self._async.engine.run, code, limits, setup_environment, requirements)

    def install_packages(self, names: list[str]) -> InstallReport:
        self._async.audit.log_environment_change("install", names)
        return anyio.run(self._async.environments.install_packages, names)

    def list_packages(self) -> str:
        return anyio.run(self._async.list_packages)

    def reset_environment(self) -> str:
        return anyio.run(self._async.reset_environment)

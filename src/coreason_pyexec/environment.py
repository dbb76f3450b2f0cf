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
import shutil
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loguru import logger
from packaging.requirements import InvalidRequirement, Requirement

from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.exceptions import (
    EnvironmentCorrupted,
    EnvironmentFailure,
    InstallFailure,
    PackageNotAllowed,
    ToolchainMissing,
)
from coreason_pyexec.locks import ReadWriteLock
from coreason_pyexec.models import InstallReport
from coreason_pyexec.process import run_process

_PROBE_SCRIPT = "import sys; print(sys.prefix)"


class EnvironmentState(str, Enum):
    ABSENT = "absent"
    VALID = "valid"
    CORRUPTED = "corrupted"


@dataclass(frozen=True)
class Environment:
    """An isolated interpreter installation identified by its root directory."""

    root: Path

    @property
    def bin_dir(self) -> Path:
        return self.root / ("Scripts" if sys.platform == "win32" else "bin")

    @property
    def interpreter_path(self) -> Path:
        return self.bin_dir / ("python.exe" if sys.platform == "win32" else "python")

    @property
    def package_manager_path(self) -> Path:
        return self.bin_dir / ("pip.exe" if sys.platform == "win32" else "pip")

    def is_present(self) -> bool:
        """Directory exists and the interpreter binary exists and is executable."""
        interpreter = self.interpreter_path
        return self.root.is_dir() and interpreter.is_file() and os.access(interpreter, os.X_OK)


def validate_requirements(names: list[str], allowed_packages: set[str] | None = None) -> list[str]:
    """Validate package requirement strings before they reach the package manager.

    Args:
        names: Requirement specifiers such as ``numpy`` or ``pandas>=2``.
        allowed_packages: Optional allowlist of base package names.

    Returns:
        list[str]: The stripped requirement strings.

    Raises:
        PackageNotAllowed: If a requirement is malformed, looks like an option,
            or is not in the allowlist.
    """
    if not names:
        raise PackageNotAllowed("At least one package name is required")

    allowed_lower = {p.lower() for p in allowed_packages} if allowed_packages is not None else None
    cleaned: list[str] = []
    for raw in names:
        name = raw.strip()
        if not name or name.startswith("-"):
            raise PackageNotAllowed(f"Invalid package requirement: {raw!r}")
        try:
            req = Requirement(name)
        except InvalidRequirement as e:
            raise PackageNotAllowed(f"Invalid package requirement: {raw!r}") from e
        if allowed_lower is not None and req.name.lower() not in allowed_lower:
            raise PackageNotAllowed(f"Package {name} (base: {req.name}) is not in the allowed list.")
        cleaned.append(name)
    return cleaned


class EnvironmentManager:
    """Creates, validates, repairs and resets isolated interpreter environments.

    Every mutation of an environment (creation, repair, reset, package installation)
    holds that environment's lock exclusively. Probing, listing and code execution
    hold it shared, so they never observe a half-built environment.
    """

    def __init__(self, config: ExecutorConfig | None = None):
        """Initializes the EnvironmentManager.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
        """
        self.config = config or ExecutorConfig()
        self.default = Environment(self.config.venv_path.resolve())
        self._locks: dict[Path, ReadWriteLock] = {}

    def lock_for(self, env: Environment) -> ReadWriteLock:
        """One lock per environment root, created on first use."""
        lock = self._locks.get(env.root)
        if lock is None:
            lock = self._locks[env.root] = ReadWriteLock()
        return lock

    async def state(self, env: Environment | None = None) -> EnvironmentState:
        env = env or self.default
        if not env.root.exists():
            return EnvironmentState.ABSENT
        if await self._probe(env):
            return EnvironmentState.VALID
        return EnvironmentState.CORRUPTED

    async def ensure(self, env: Environment | None = None) -> Environment:
        """Return a validated, ready-to-use environment, creating or repairing it if needed.

        Args:
            env: The environment to ensure. Defaults to the configured workspace environment.

        Returns:
            Environment: The validated environment.

        Raises:
            ToolchainMissing: If no base interpreter can be found.
            EnvironmentFailure: If creation fails.
            EnvironmentCorrupted: If the environment is still broken after one rebuild.
        """
        env = env or self.default
        lock = self.lock_for(env)

        # Optimistic check
        async with lock.read():
            if await self._probe(env):
                return env

        async with lock.write():
            return await self._ensure_locked(env)

    @asynccontextmanager
    async def shared(self, env: Environment | None = None) -> AsyncIterator[Environment]:
        """Hold the environment in shared mode for the duration of a read or a run."""
        env = env or self.default
        async with self.lock_for(env).read():
            if not env.is_present():
                raise EnvironmentCorrupted(f"Environment at {env.root} disappeared before use")
            yield env

    async def reset(self, env: Environment | None = None) -> Environment:
        """Remove the environment unconditionally and recreate it.

        Args:
            env: The environment to reset.

        Returns:
            Environment: The freshly created environment.
        """
        env = env or self.default
        async with self.lock_for(env).write():
            logger.info(f"Resetting environment at {env.root}")
            await self._destroy(env)
            return await self._ensure_locked(env)

    async def install_packages(self, names: list[str], env: Environment | None = None) -> InstallReport:
        """Install packages into the environment with its package manager.

        Packages are only ever added; there is no rollback when one of them fails.

        Args:
            names: Requirement specifiers to install.
            env: The target environment.

        Returns:
            InstallReport: Package manager output and warnings.

        Raises:
            PackageNotAllowed: If a name is malformed or not allowed by policy.
            InstallFailure: If the package manager exits non-zero.
        """
        packages = validate_requirements(names, self.config.allowed_packages)
        env = env or self.default
        async with self.lock_for(env).write():
            await self._ensure_locked(env)
            logger.info(f"Installing packages {packages} into {env.root}")
            result = await run_process(
                [env.package_manager_path, "install", *packages],
                cwd=self.config.workspace_root,
                timeout=self.config.install_timeout,
            )
        if result.timed_out:
            raise InstallFailure(
                f"Package installation exceeded {self.config.install_timeout} seconds limit.", result.output
            )
        if result.returncode != 0:
            logger.error(f"Failed to install {packages}: {result.stderr}")
            raise InstallFailure(f"Failed to install packages: {' '.join(packages)}", result.output)
        return InstallReport(packages=packages, output=result.stdout, warnings=result.stderr)

    async def list_packages(self, env: Environment | None = None) -> str:
        """List installed packages as reported by the package manager.

        Args:
            env: The environment to inspect.

        Returns:
            str: The package manager's listing.

        Raises:
            EnvironmentFailure: If listing fails.
        """
        env = await self.ensure(env)
        async with self.shared(env):
            result = await run_process(
                [env.package_manager_path, "list"],
                cwd=self.config.workspace_root,
                timeout=self.config.install_timeout,
            )
        if result.returncode != 0 or result.timed_out:
            raise EnvironmentFailure("Failed to list packages", result.output)
        return result.stdout

    async def _ensure_locked(self, env: Environment) -> Environment:
        """Probe-or-rebuild. Caller must hold the environment's write lock."""
        rebuilt = False
        while True:
            if not env.root.exists():
                await self._create(env)
            if await self._probe(env):
                return env
            if rebuilt:
                raise EnvironmentCorrupted(f"Environment at {env.root} is still unusable after a rebuild")
            logger.warning(f"Environment at {env.root} failed its probe. Rebuilding.")
            await self._destroy(env)
            rebuilt = True

    async def _probe(self, env: Environment) -> bool:
        if not env.is_present():
            return False
        try:
            result = await run_process(
                [env.interpreter_path, "-c", _PROBE_SCRIPT],
                timeout=self.config.probe_timeout,
            )
        except OSError as e:
            logger.warning(f"Probe of {env.interpreter_path} failed to start: {e}")
            return False
        if result.returncode != 0 or result.timed_out:
            logger.warning(f"Probe of {env.interpreter_path} failed: {result.stderr.strip()}")
            return False
        return True

    def find_base_interpreter(self) -> str:
        """Resolve the interpreter used to create environments.

        Raises:
            ToolchainMissing: If none of the candidate names resolve on PATH.
        """
        for candidate in self.config.python_candidates:
            path = shutil.which(candidate)
            if path:
                return path
        raise ToolchainMissing(
            f"No Python interpreter found (tried: {', '.join(self.config.python_candidates)}). "
            "Install Python 3 and make sure it is on PATH."
        )

    async def _create(self, env: Environment) -> None:
        base = self.find_base_interpreter()
        logger.info(f"Creating virtual environment at {env.root} using {base}")
        env.root.parent.mkdir(parents=True, exist_ok=True)
        try:
            result = await run_process([base, "-m", "venv", env.root], timeout=self.config.install_timeout)
        except OSError as e:
            raise EnvironmentFailure(f"Failed to create virtual environment: {e}") from e
        if result.returncode != 0 or result.timed_out:
            # Never leave a partial directory behind
            await self._destroy(env)
            raise EnvironmentFailure("Failed to create virtual environment", result.output)
        logger.info(f"Virtual environment created at {env.root}")

    async def _destroy(self, env: Environment) -> None:
        if not env.root.exists():
            return
        await asyncio.to_thread(shutil.rmtree, env.root)

import sys
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from loguru import logger

from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.environment import Environment


@pytest.fixture
def config(tmp_path: Path) -> ExecutorConfig:
    return ExecutorConfig(
        workspace_root=tmp_path / "workspace",
        execution_timeout=10.0,
        probe_timeout=5.0,
        enable_audit_logging=False,
    )


@pytest.fixture
def log_messages() -> Generator[list[str], None, None]:
    """Capture loguru messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda msg: messages.append(msg.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


def make_fake_venv(root: Path) -> Environment:
    """Lay out an environment whose interpreter is the test interpreter.

    The interpreter is a shell wrapper that execs the host interpreter, so the child
    sees the same site-packages as the test run.
    """
    env = Environment(root)
    env.bin_dir.mkdir(parents=True, exist_ok=True)
    env.interpreter_path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "$@"\n')
    env.interpreter_path.chmod(0o755)
    env.package_manager_path.write_text("#!/bin/sh\nexit 0\n")
    env.package_manager_path.chmod(0o755)
    return env


@pytest.fixture
def fake_env(config: ExecutorConfig) -> Environment:
    if sys.platform == "win32":  # pragma: no cover
        pytest.skip("shell wrapper interpreter layout is POSIX only")
    return make_fake_venv(config.venv_path.resolve())


@pytest.fixture
def process_result() -> Any:
    from coreason_pyexec.process import ProcessResult

    def _make(returncode: int = 0, stdout: str = "", stderr: str = "", timed_out: bool = False) -> ProcessResult:
        return ProcessResult(stdout=stdout, stderr=stderr, returncode=returncode, timed_out=timed_out)

    return _make

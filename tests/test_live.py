import shutil
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.exceptions import EnvironmentFailure
from coreason_pyexec.models import ResourceLimits
from coreason_pyexec.service import SandboxService


@pytest_asyncio.fixture
async def live_service(config: ExecutorConfig) -> AsyncGenerator[SandboxService, None]:
    """
    Provide a service backed by a real virtual environment.
    Skips when the host cannot build one (Environment Issue).
    """
    if not any(shutil.which(name) for name in config.python_candidates):
        pytest.skip("No base interpreter on PATH")
    service = SandboxService(config.model_copy(update={"install_timeout": 120.0}))
    try:
        await service.environments.ensure()
    except EnvironmentFailure as e:
        pytest.skip(f"Host cannot create virtual environments (Environment Issue): {e}")
    yield service
    await service.shutdown()


@pytest.mark.live
@pytest.mark.asyncio
async def test_live_ensure_is_idempotent(live_service: SandboxService) -> None:
    env = live_service.environments.default
    mtime = env.interpreter_path.lstat().st_mtime_ns

    again = await live_service.environments.ensure()

    assert again == env
    assert env.interpreter_path.lstat().st_mtime_ns == mtime


@pytest.mark.live
@pytest.mark.asyncio
async def test_live_runs_inside_environment(live_service: SandboxService) -> None:
    outcome = await live_service.execute_code("import sys\nprint(sys.prefix)")

    assert outcome.ok, outcome.stderr
    assert outcome.stdout.strip() == str(live_service.environments.default.root)


@pytest.mark.live
@pytest.mark.asyncio
async def test_live_timeout(live_service: SandboxService) -> None:
    outcome = await live_service.execute_code("while True:\n    pass", limits=ResourceLimits(timeout=1.0))

    assert outcome.status == "timeout"
    assert outcome.exit_code == 124


@pytest.mark.live
@pytest.mark.asyncio
async def test_live_list_and_reset(live_service: SandboxService) -> None:
    listing = await live_service.list_packages()
    assert "pip" in listing

    assert await live_service.reset_environment() == "Virtual environment reset successfully"
    assert live_service.environments.default.is_present()

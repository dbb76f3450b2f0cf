# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ImageContent, TextContent

from coreason_pyexec.exceptions import InstallFailure, PackageNotAllowed, ToolchainMissing
from coreason_pyexec.main import (
    lifespan,
    main,
    python_execute,
    python_install_package,
    python_list_packages,
    python_reset_environment,
    render_outcome,
)
from coreason_pyexec.models import Artifact, Diagnosis, ExecutionOutcome, InstallReport


def png_artifact(name: str = "plot_000.png") -> Artifact:
    return Artifact(filename=name, mime_type="image/png", size_bytes=120, data="iVBORw0KGgo=")


@pytest.fixture
def mock_sandbox() -> Generator[MagicMock, None, None]:
    with patch("coreason_pyexec.main.sandbox", new_callable=MagicMock) as mock:
        # Configure methods to be awaitable
        mock.execute_code = AsyncMock()
        mock.install_packages = AsyncMock()
        mock.list_packages = AsyncMock()
        mock.reset_environment = AsyncMock()
        mock.shutdown = AsyncMock()
        yield mock


def test_render_outcome_text_only() -> None:
    outcome = ExecutionOutcome(stdout="hello\n", stderr="", exit_code=0, execution_duration=1.23456)

    result = render_outcome(outcome)

    assert len(result) == 1
    assert isinstance(result[0], TextContent)
    assert result[0].text == "Output:\nhello\n\nDuration: 1.2346s"


def test_render_outcome_no_output() -> None:
    result = render_outcome(ExecutionOutcome(stdout="", stderr="", exit_code=0))
    assert result[0].text == "Code executed successfully with no output"


def test_render_outcome_warnings_on_success() -> None:
    result = render_outcome(ExecutionOutcome(stdout="", stderr="DeprecationWarning: old", exit_code=0))
    assert result[0].text == "Error/Warning:\nDeprecationWarning: old"


def test_render_outcome_failure_with_diagnosis() -> None:
    outcome = ExecutionOutcome(
        stdout="",
        stderr="boom",
        exit_code=1,
        diagnosis=Diagnosis(message="ValueError: boom", hint="Check the input."),
    )

    text = render_outcome(outcome)[0].text  # type: ignore[union-attr]

    assert text == "Error/Warning:\nboom\nExit Code: 1\nValueError: boom\nHint: Check the input."


def test_render_outcome_timeout_and_signal() -> None:
    timed_out = ExecutionOutcome(stdout="", stderr="", exit_code=124, signal=9, killed_by_timeout=True)
    killed = ExecutionOutcome(stdout="", stderr="", exit_code=None, signal=9)

    assert render_outcome(timed_out)[0].text == "Status: timed out"  # type: ignore[union-attr]
    assert render_outcome(killed)[0].text == "Status: killed by signal 9"  # type: ignore[union-attr]


def test_render_outcome_images_follow_text() -> None:
    outcome = ExecutionOutcome(
        stdout="plotted\n", stderr="", exit_code=0, artifacts=[png_artifact(), png_artifact("plot_001.png")]
    )

    result = render_outcome(outcome)

    assert len(result) == 3
    assert isinstance(result[0], TextContent)
    assert all(isinstance(block, ImageContent) for block in result[1:])
    assert result[1].data == "iVBORw0KGgo="  # type: ignore[union-attr]
    assert result[1].mimeType == "image/png"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_python_execute_success(mock_sandbox: MagicMock) -> None:
    mock_sandbox.execute_code.return_value = ExecutionOutcome(
        stdout="2\n", stderr="", exit_code=0, artifacts=[png_artifact()]
    )

    result = await python_execute("print(1 + 1)")

    mock_sandbox.execute_code.assert_awaited_once_with("print(1 + 1)", setup_environment=False, requirements=[])
    assert result[0].text.startswith("Output:\n2")  # type: ignore[union-attr]
    assert isinstance(result[1], ImageContent)


@pytest.mark.asyncio
async def test_python_execute_passes_options(mock_sandbox: MagicMock) -> None:
    mock_sandbox.execute_code.return_value = ExecutionOutcome(stdout="", stderr="", exit_code=0)

    await python_execute("import numpy", setup_venv=True, requirements=["numpy"])

    mock_sandbox.execute_code.assert_awaited_once_with("import numpy", setup_environment=True, requirements=["numpy"])


@pytest.mark.asyncio
async def test_python_execute_failure_is_tool_error(mock_sandbox: MagicMock) -> None:
    mock_sandbox.execute_code.return_value = ExecutionOutcome(
        stdout="",
        stderr="Traceback...\nZeroDivisionError: division by zero",
        exit_code=1,
        artifacts=[png_artifact()],
        diagnosis=Diagnosis(message="ZeroDivisionError: division by zero"),
    )

    with pytest.raises(ToolError) as exc_info:
        await python_execute("1/0")

    text = str(exc_info.value)
    assert "Exit Code: 1" in text
    assert "ZeroDivisionError" in text
    assert "1 image artifact(s) were produced but are not included in error results." in text


@pytest.mark.asyncio
async def test_python_execute_environment_error(mock_sandbox: MagicMock) -> None:
    mock_sandbox.execute_code.side_effect = ToolchainMissing("No Python interpreter found (tried: python3, python)")

    with pytest.raises(ToolError, match="No Python interpreter found") as exc_info:
        await python_execute("print(1)")

    assert "Hint: Install Python 3" in str(exc_info.value)


@pytest.mark.asyncio
async def test_python_execute_unexpected_error(mock_sandbox: MagicMock) -> None:
    mock_sandbox.execute_code.side_effect = RuntimeError("disk on fire")

    with pytest.raises(ToolError, match="Error: failed to execute code: disk on fire"):
        await python_execute("print(1)")


@pytest.mark.asyncio
async def test_python_install_package(mock_sandbox: MagicMock) -> None:
    mock_sandbox.install_packages.return_value = InstallReport(
        packages=["numpy"], output="Successfully installed numpy-2.0.0"
    )

    result = await python_install_package(["numpy"])

    mock_sandbox.install_packages.assert_awaited_once_with(["numpy"])
    assert result == "Packages installed successfully:\nSuccessfully installed numpy-2.0.0"


@pytest.mark.asyncio
async def test_python_install_package_failure(mock_sandbox: MagicMock) -> None:
    mock_sandbox.install_packages.side_effect = InstallFailure(
        "Failed to install packages: nosuchpkg", "ERROR: No matching distribution found for nosuchpkg"
    )

    with pytest.raises(ToolError, match="No matching distribution found"):
        await python_install_package(["nosuchpkg"])


@pytest.mark.asyncio
async def test_python_install_package_rejected(mock_sandbox: MagicMock) -> None:
    mock_sandbox.install_packages.side_effect = PackageNotAllowed("Invalid package requirement: '--pre'")

    with pytest.raises(ToolError, match="Invalid package requirement"):
        await python_install_package(["--pre"])


@pytest.mark.asyncio
async def test_python_list_packages(mock_sandbox: MagicMock) -> None:
    mock_sandbox.list_packages.return_value = "Package Version\nnumpy   2.0.0"

    result = await python_list_packages()

    assert result == "Installed packages:\nPackage Version\nnumpy   2.0.0"


@pytest.mark.asyncio
async def test_python_reset_environment(mock_sandbox: MagicMock) -> None:
    mock_sandbox.reset_environment.return_value = "Virtual environment reset successfully"

    assert await python_reset_environment() == "Virtual environment reset successfully"


@pytest.mark.asyncio
async def test_python_reset_environment_failure(mock_sandbox: MagicMock) -> None:
    mock_sandbox.reset_environment.side_effect = OSError("read-only file system")

    with pytest.raises(ToolError, match="failed to reset environment"):
        await python_reset_environment()


@pytest.mark.asyncio
async def test_lifespan_shuts_down_sandbox(mock_sandbox: MagicMock) -> None:
    async with lifespan(MagicMock()):
        mock_sandbox.shutdown.assert_not_awaited()

    mock_sandbox.shutdown.assert_awaited_once()


def test_main() -> None:
    with patch("coreason_pyexec.main.mcp") as mock_mcp:
        main()
        mock_mcp.run.assert_called_once()

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ImageContent, TextContent

from coreason_pyexec.diagnostics import classify_exception
from coreason_pyexec.exceptions import SandboxError
from coreason_pyexec.models import ExecutionOutcome
from coreason_pyexec.service import SandboxService
from coreason_pyexec.utils.logger import logger

# Initialize Sandbox Logic
sandbox = SandboxService()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    try:
        yield
    finally:
        await sandbox.shutdown()


# Initialize MCP Server
mcp = FastMCP("coreason-pyexec", lifespan=lifespan)


def render_outcome(outcome: ExecutionOutcome) -> list[TextContent | ImageContent]:
    """Convert a run outcome into MCP content blocks.

    Order: combined text (output, errors, diagnosis, duration), then images.
    """
    sections: list[str] = []
    if outcome.stdout:
        sections.append(f"Output:\n{outcome.stdout}")
    if outcome.stderr:
        sections.append(f"Error/Warning:\n{outcome.stderr}")
    if not outcome.ok:
        if outcome.killed_by_timeout:
            sections.append("Status: timed out")
        elif outcome.signal is not None:
            sections.append(f"Status: killed by signal {outcome.signal}")
        else:
            sections.append(f"Exit Code: {outcome.exit_code}")
        if outcome.diagnosis:
            sections.append(outcome.diagnosis.render())
    if not sections:
        sections.append("Code executed successfully with no output")
    if outcome.execution_duration:
        sections.append(f"Duration: {outcome.execution_duration:.4f}s")

    output: list[TextContent | ImageContent] = [TextContent(type="text", text="\n".join(sections))]
    for artifact in outcome.artifacts:
        output.append(ImageContent(type="image", data=artifact.data, mimeType=artifact.mime_type))
    return output


def _error_text(content: list[TextContent | ImageContent]) -> str:
    texts = [block.text for block in content if isinstance(block, TextContent)]
    images = len(content) - len(texts)
    if images:
        texts.append(f"{images} image artifact(s) were produced but are not included in error results.")
    return "\n".join(texts)


def _tool_error(action: str, e: Exception) -> ToolError:
    if isinstance(e, SandboxError):
        return ToolError(classify_exception(e).render())
    logger.exception(f"Unexpected error while trying to {action}")
    return ToolError(f"Error: failed to {action}: {e!s}")


@mcp.tool()  # type: ignore[misc]
async def python_execute(
    code: str, setup_venv: bool = False, requirements: list[str] | None = None
) -> list[TextContent | ImageContent]:
    """
    Execute Python code in a virtual environment.
    Returns stdout, stderr, and any generated image artifacts.
    """
    try:
        outcome = await sandbox.execute_code(code, setup_environment=setup_venv, requirements=requirements or [])
    except Exception as e:
        raise _tool_error("execute code", e) from e

    content = render_outcome(outcome)
    if not outcome.ok:
        raise ToolError(_error_text(content))
    return content


@mcp.tool()  # type: ignore[misc]
async def python_install_package(packages: list[str]) -> str:
    """
    Install Python packages in the virtual environment.
    """
    try:
        report = await sandbox.install_packages(packages)
    except Exception as e:
        raise _tool_error("install packages", e) from e
    return report.render()


@mcp.tool()  # type: ignore[misc]
async def python_list_packages() -> str:
    """
    List installed packages in the virtual environment.
    """
    try:
        listing = await sandbox.list_packages()
    except Exception as e:
        raise _tool_error("list packages", e) from e
    return f"Installed packages:\n{listing}"


@mcp.tool()  # type: ignore[misc]
async def python_reset_environment() -> str:
    """
    Reset the virtual environment.
    """
    try:
        return await sandbox.reset_environment()
    except Exception as e:
        raise _tool_error("reset environment", e) from e


def main() -> None:
    """Entry point for the MCP server."""
    logger.info("Starting coreason-pyexec MCP server on stdio")
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

from typing import Literal

from pydantic import BaseModel, Field, PositiveFloat, PositiveInt

from coreason_pyexec.config import ExecutorConfig
from coreason_pyexec.exceptions import ExecutionFailure, ExecutionTimeout

# Conventional exit status of timeout(1); reported when a run hits its deadline
TIMEOUT_EXIT_CODE = 124


class ResourceLimits(BaseModel):
    """Ceilings applied to a single run.

    Attributes:
        timeout: Wall-clock limit in seconds.
        max_memory_mb: Virtual memory ceiling for the child process.
        max_output_bytes: Captured bytes kept per output stream.
    """

    timeout: PositiveFloat = 30.0
    max_memory_mb: PositiveInt = 1024
    max_output_bytes: PositiveInt = 1024 * 1024

    @classmethod
    def from_config(cls, config: ExecutorConfig) -> "ResourceLimits":
        return cls(
            timeout=config.execution_timeout,
            max_memory_mb=config.max_memory_mb,
            max_output_bytes=config.max_output_bytes,
        )


class Artifact(BaseModel):
    """A validated image produced by a run.

    Attributes:
        filename: Name of the file in the artifact directory.
        mime_type: MIME type derived from the file extension.
        size_bytes: Size of the file on disk.
        data: Base64-encoded file contents.
    """

    filename: str
    mime_type: str
    size_bytes: int
    data: str = Field(repr=False)


class Diagnosis(BaseModel):
    """Human-readable explanation of a failure."""

    message: str
    hint: str | None = None

    def render(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ExecutionOutcome(BaseModel):
    """Represents the result of running a snippet.

    Attributes:
        stdout: Captured standard output (possibly truncated).
        stderr: Captured standard error (possibly truncated).
        exit_code: Exit status, or TIMEOUT_EXIT_CODE on deadline expiry,
            or None when the process was killed by a signal.
        signal: Number of the signal that terminated the process, if any.
        killed_by_timeout: Whether the wall-clock deadline elapsed first.
        truncated: Whether either output stream hit the output ceiling.
        artifacts: Images captured during the run.
        execution_duration: Wall-clock duration in seconds.
        diagnosis: Classifier annotation, set for failed runs only.
    """

    stdout: str
    stderr: str
    exit_code: int | None
    signal: int | None = None
    killed_by_timeout: bool = False
    truncated: bool = False
    artifacts: list[Artifact] = Field(default_factory=list)
    execution_duration: float = 0.0
    diagnosis: Diagnosis | None = None

    @property
    def status(self) -> Literal["success", "timeout", "killed", "failure"]:
        if self.killed_by_timeout:
            return "timeout"
        if self.exit_code == 0:
            return "success"
        if self.signal is not None:
            return "killed"
        return "failure"

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def raise_for_status(self) -> None:
        """Raise ExecutionTimeout or ExecutionFailure if the run did not succeed."""
        if self.ok:
            return
        message = self.diagnosis.render() if self.diagnosis else f"Run ended with status {self.status}"
        if self.killed_by_timeout:
            raise ExecutionTimeout(message)
        raise ExecutionFailure(message)


class InstallReport(BaseModel):
    """What the package manager reported for an install request."""

    packages: list[str]
    output: str
    warnings: str = ""

    def render(self) -> str:
        text = f"Packages installed successfully:\n{self.output}"
        if self.warnings:
            text += f"\nWarnings:\n{self.warnings}"
        return text

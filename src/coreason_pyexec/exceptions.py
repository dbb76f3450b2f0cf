# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

"""Error taxonomy for the execution environment."""


class SandboxError(Exception):
    """Base class for all errors raised by coreason-pyexec."""


class EnvironmentFailure(SandboxError):
    """The isolated interpreter environment could not be made usable.

    Attributes:
        output: Output of the underlying tool, if any.
    """

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output.strip()}"
        return base


class ToolchainMissing(EnvironmentFailure):
    """No usable base interpreter was found. Requires operator intervention."""


class EnvironmentCorrupted(EnvironmentFailure):
    """The environment failed its probe even after one rebuild."""


class PackageNotAllowed(SandboxError, ValueError):
    """A package requirement was malformed or rejected by policy."""


class InstallFailure(SandboxError):
    """The package manager reported a non-zero exit status.

    Attributes:
        output: Combined package manager output, verbatim.
    """

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output.strip()}"
        return base


class ExecutionError(SandboxError):
    """Base class for failed runs. Only raised on request via ``raise_for_status``."""


class ExecutionTimeout(ExecutionError, TimeoutError):
    """The run exceeded its wall-clock deadline."""


class ExecutionFailure(ExecutionError):
    """The run exited non-zero or was killed for a reason other than its deadline."""


class ArtifactCorrupt(SandboxError):
    """An individual artifact failed validation. Never escalated past the collector."""

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

"""Maps raw execution failures to a diagnosis with a remediation hint."""

import re

from coreason_pyexec.exceptions import (
    EnvironmentCorrupted,
    InstallFailure,
    PackageNotAllowed,
    ToolchainMissing,
)
from coreason_pyexec.models import Diagnosis, ExecutionOutcome

_MISSING_MODULE = re.compile(r"No module named ['\"]([^'\"]+)['\"]")


def _last_line(text: str) -> str | None:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else None


def classify(outcome: ExecutionOutcome, timeout: float | None = None) -> Diagnosis:
    """Diagnose a finished run. First matching rule wins.

    Advisory only: the outcome's exit status is never changed.

    Args:
        outcome: The run outcome to inspect.
        timeout: The deadline that applied, for the message.

    Returns:
        Diagnosis: A message and, when a rule matched, a hint.
    """
    stderr = outcome.stderr or ""
    lowered = stderr.lower()
    message = _last_line(stderr) or f"Process exited with code {outcome.exit_code}"

    if outcome.killed_by_timeout:
        limit = f" after {timeout:g} seconds" if timeout else ""
        return Diagnosis(
            message=f"Execution timed out{limit}",
            hint="The code took too long to run. Optimize it or raise the execution timeout.",
        )

    if "modulenotfounderror" in lowered or "no module named" in lowered:
        match = _MISSING_MODULE.search(stderr)
        if match:
            package = match.group(1).split(".")[0]
            hint = f"Install the missing package, e.g. with requirements=['{package}']."
        else:
            hint = "Install the missing package before running the code."
        return Diagnosis(message=message, hint=hint)

    if "syntaxerror" in lowered:
        return Diagnosis(message=message, hint="Check the code syntax.")

    if "memory" in lowered:
        return Diagnosis(message=message, hint="Reduce the data size or raise the memory limit.")

    if "permission" in lowered:
        return Diagnosis(message=message, hint="Check file permissions.")

    if outcome.signal is not None:
        return Diagnosis(
            message=f"Process was terminated by signal {outcome.signal}",
            hint="The process was terminated, possibly due to resource limits.",
        )

    return Diagnosis(message=message)


def classify_exception(exc: BaseException) -> Diagnosis:
    """Diagnose an environment-level error that aborted a run before it started."""
    message = str(exc)
    if isinstance(exc, ToolchainMissing):
        return Diagnosis(message=message, hint="Install Python 3 on the host and make sure it is on PATH.")
    if isinstance(exc, EnvironmentCorrupted):
        return Diagnosis(message=message, hint="Reset the environment; if it keeps failing, check disk space.")
    if isinstance(exc, PackageNotAllowed):
        return Diagnosis(message=message, hint="Use plain package names or version specifiers.")
    if isinstance(exc, InstallFailure):
        return Diagnosis(message=message, hint="Check the package names and versions.")
    return Diagnosis(message=message)

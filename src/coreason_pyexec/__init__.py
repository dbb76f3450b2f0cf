# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

"""
coreason-pyexec
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .artifacts import ArtifactCollector
from .config import ExecutorConfig
from .engine import ExecutionEngine
from .environment import Environment, EnvironmentManager
from .exceptions import (
    ArtifactCorrupt,
    EnvironmentCorrupted,
    EnvironmentFailure,
    ExecutionFailure,
    ExecutionTimeout,
    InstallFailure,
    PackageNotAllowed,
    SandboxError,
    ToolchainMissing,
)
from .instrumentation import inject
from .models import Artifact, Diagnosis, ExecutionOutcome, InstallReport, ResourceLimits
from .reaper import LifecycleReaper
from .service import Sandbox, SandboxService

__all__ = [
    "Artifact",
    "ArtifactCollector",
    "ArtifactCorrupt",
    "Diagnosis",
    "Environment",
    "EnvironmentCorrupted",
    "EnvironmentFailure",
    "EnvironmentManager",
    "ExecutionEngine",
    "ExecutionFailure",
    "ExecutionOutcome",
    "ExecutionTimeout",
    "ExecutorConfig",
    "InstallFailure",
    "InstallReport",
    "LifecycleReaper",
    "PackageNotAllowed",
    "ResourceLimits",
    "Sandbox",
    "SandboxError",
    "SandboxService",
    "ToolchainMissing",
    "inject",
]

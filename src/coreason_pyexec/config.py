# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

from pathlib import Path

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecutorConfig(BaseSettings):
    """
    Configuration for the Python execution environment.
    Resolved once at startup and treated as read-only afterwards.
    """

    workspace_root: Path = Path("workspace")
    venv_dir_name: str = "venv"

    # Interpreter discovery order used when the environment must be created
    python_candidates: list[str] = Field(default_factory=lambda: ["python3", "python"])

    execution_timeout: PositiveFloat = 30.0
    max_memory_mb: PositiveInt = 1024
    max_output_bytes: PositiveInt = 1024 * 1024
    install_timeout: PositiveFloat = 300.0
    probe_timeout: PositiveFloat = 15.0

    max_artifacts: PositiveInt = 3
    min_artifact_bytes: int = 100

    stale_scratch_age: PositiveFloat = 3600.0  # 1 hour
    reaper_interval: PositiveFloat = 600.0  # Sweep every 10 minutes

    # None means any package may be installed
    allowed_packages: set[str] | None = None
    enable_audit_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="COREASON_PYEXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @property
    def venv_path(self) -> Path:
        return self.workspace_root / self.venv_dir_name

    @property
    def artifacts_root(self) -> Path:
        return self.workspace_root / "artifacts"

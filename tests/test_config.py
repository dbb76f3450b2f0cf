from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from coreason_pyexec.config import ExecutorConfig


def test_defaults() -> None:
    with patch.dict("os.environ", {}, clear=True):
        config = ExecutorConfig(_env_file=None)  # type: ignore[call-arg]

    assert config.workspace_root == Path("workspace")
    assert config.venv_path == Path("workspace") / "venv"
    assert config.artifacts_root == Path("workspace") / "artifacts"
    assert config.python_candidates == ["python3", "python"]
    assert config.execution_timeout == 30.0
    assert config.max_artifacts == 3
    assert config.min_artifact_bytes == 100
    assert config.stale_scratch_age == 3600.0
    assert config.allowed_packages is None


def test_environment_overrides() -> None:
    env = {
        "COREASON_PYEXEC_WORKSPACE_ROOT": "/srv/pyexec",
        "COREASON_PYEXEC_EXECUTION_TIMEOUT": "5",
        "COREASON_PYEXEC_ALLOWED_PACKAGES": '["numpy", "pandas"]',
        "COREASON_PYEXEC_ENABLE_AUDIT_LOGGING": "false",
    }
    with patch.dict("os.environ", env, clear=True):
        config = ExecutorConfig(_env_file=None)  # type: ignore[call-arg]

    assert config.venv_path == Path("/srv/pyexec/venv")
    assert config.execution_timeout == 5.0
    assert config.allowed_packages == {"numpy", "pandas"}
    assert config.enable_audit_logging is False


def test_config_is_read_only() -> None:
    config = ExecutorConfig(_env_file=None)  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        config.execution_timeout = 1.0  # type: ignore[misc]


def test_rejects_non_positive_limits() -> None:
    with pytest.raises(ValidationError):
        ExecutorConfig(execution_timeout=0, _env_file=None)  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        ExecutorConfig(max_artifacts=-1, _env_file=None)  # type: ignore[call-arg]

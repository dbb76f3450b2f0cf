# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

import hashlib

from loguru import logger


class AuditLogger:
    """Audit trail for submitted code and package changes.

    Logs to the standard logger sinks; the code itself is never logged, only its hash.
    """

    def __init__(self, enabled: bool = True):
        """Initializes the AuditLogger.

        Args:
            enabled: Whether to emit audit records.
        """
        self.enabled = enabled

    def log_pre_execution(self, code: str, requirements: list[str] | None = None) -> str:
        """Log a code execution attempt.

        Args:
            code: The code about to be executed.
            requirements: Packages requested alongside the code.

        Returns:
            str: The SHA-256 hash of the code.
        """
        code_hash = hashlib.sha256(code.encode("utf-8")).hexdigest()
        if self.enabled:
            logger.info(
                f"AUDIT: Executing python code. Hash: {code_hash}, Length: {len(code)}, "
                f"Requirements: {requirements or []}"
            )
        return code_hash

    def log_environment_change(self, action: str, packages: list[str] | None = None) -> None:
        if self.enabled:
            logger.info(f"AUDIT: Environment {action}. Packages: {packages or []}")

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

import base64
import binascii
import re
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_pyexec.exceptions import ArtifactCorrupt
from coreason_pyexec.models import Artifact

IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "svg")

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}
DEFAULT_MIME_TYPE = "image/png"

_BASE64_ALPHABET = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


def mime_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower().lstrip("."), DEFAULT_MIME_TYPE)


class ArtifactCollector:
    """Gathers the images a run left in its artifact directory."""

    def __init__(self, max_artifacts: int = 3, min_bytes: int = 100):
        """Initializes the ArtifactCollector.

        Args:
            max_artifacts: Maximum number of artifacts returned per run.
            min_bytes: Files smaller than this are treated as incomplete writes.
        """
        self.max_artifacts = max_artifacts
        self.min_bytes = min_bytes

    def discover(self, artifact_dir: Path) -> list[Path]:
        """List candidate image files in discovery order (sorted by name)."""
        if not artifact_dir.is_dir():
            return []
        return sorted(
            p for p in artifact_dir.iterdir() if p.is_file() and p.suffix.lower().lstrip(".") in IMAGE_EXTENSIONS
        )

    async def load(self, path: Path) -> Artifact:
        """Read, encode and validate a single artifact.

        Args:
            path: The image file to load.

        Returns:
            Artifact: The encoded artifact.

        Raises:
            ArtifactCorrupt: If the file is too small, empty, or fails encoding checks.
        """
        size = path.stat().st_size
        if size < self.min_bytes:
            raise ArtifactCorrupt(f"{path.name} is only {size} bytes, likely an incomplete write")

        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        if not content:
            raise ArtifactCorrupt(f"{path.name} is empty")

        try:
            encoded = base64.b64encode(content).decode("ascii")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ArtifactCorrupt(f"Base64 encoding failed for {path.name}: {e}") from e

        if not encoded or not _BASE64_ALPHABET.match(encoded):
            raise ArtifactCorrupt(f"Invalid base64 output for {path.name} (length {len(encoded)})")

        return Artifact(
            filename=path.name,
            mime_type=mime_type_for(path),
            size_bytes=len(content),
            data=encoded,
        )

    async def collect(self, artifact_dir: Path) -> list[Artifact]:
        """Collect up to ``max_artifacts`` valid images from the directory.

        Invalid files are skipped and logged; they never fail the run.

        Args:
            artifact_dir: The run's artifact directory.

        Returns:
            list[Artifact]: Valid artifacts, first N in discovery order.
        """
        candidates = self.discover(artifact_dir)
        artifacts: list[Artifact] = []
        examined = 0
        for path in candidates:
            if len(artifacts) >= self.max_artifacts:
                break
            examined += 1
            try:
                artifacts.append(await self.load(path))
            except ArtifactCorrupt as e:
                logger.warning(f"Skipping artifact: {e}")
            except OSError as e:
                logger.warning(f"Failed to read artifact {path.name}: {e}")

        omitted = len(candidates) - examined
        if omitted:
            logger.info(f"Returning first {len(artifacts)} artifacts; {omitted} more were omitted")
        logger.debug(f"Collected {len(artifacts)} artifacts from {artifact_dir}")
        return artifacts

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_pyexec

"""Child process spawning with deadline, output and memory ceilings."""

import asyncio
import os
import signal
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

if sys.platform != "win32":
    import resource

CHUNK_SIZE = 64 * 1024
TRUNCATION_MARKER = "\n... [output truncated, {omitted} bytes omitted]"

# Grace period for pipe readers after the child is gone
_DRAIN_TIMEOUT = 5.0

# RLIMIT_AS is only honored reliably by the Linux kernel
MEMORY_LIMIT_SUPPORTED = sys.platform.startswith("linux")

_memory_warning_logged = False


@dataclass
class ProcessResult:
    """Raw result of a child process.

    Attributes:
        stdout: Decoded standard output, truncated to the ceiling.
        stderr: Decoded standard error, truncated to the ceiling.
        returncode: Exit status; negative values carry the terminating signal on POSIX.
        timed_out: Whether the deadline elapsed before the process exited.
        truncated: Whether either stream exceeded the output ceiling.
        duration: Wall-clock duration in seconds.
    """

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False
    truncated: bool = False
    duration: float = 0.0

    @property
    def signal(self) -> int | None:
        if self.returncode < 0:
            return -self.returncode
        return None

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def _memory_limiter(max_memory_mb: int) -> Callable[[], None]:
    limit = max_memory_mb * 1024 * 1024

    def _apply() -> None:
        # Runs in the forked child before exec
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return _apply


def _preexec_for(max_memory_mb: int | None) -> Callable[[], None] | None:
    global _memory_warning_logged
    if max_memory_mb is None:
        return None
    if MEMORY_LIMIT_SUPPORTED:
        return _memory_limiter(max_memory_mb)
    if not _memory_warning_logged:
        logger.warning(
            f"Memory ceiling of {max_memory_mb}MB is not enforced on {sys.platform}; "
            "only the timeout and output limits apply."
        )
        _memory_warning_logged = True
    return None


async def _read_capped(stream: asyncio.StreamReader | None, limit: int | None) -> tuple[bytes, int]:
    """Read a stream to EOF, keeping at most ``limit`` bytes.

    The remainder is drained and discarded so the child never blocks on a full pipe.

    Returns:
        tuple[bytes, int]: The kept bytes and the number of bytes dropped.
    """
    if stream is None:
        return b"", 0
    kept = bytearray()
    dropped = 0
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            break
        if limit is None:
            kept.extend(chunk)
            continue
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
        dropped += max(0, len(chunk) - max(room, 0))
    return bytes(kept), dropped


def _decode(data: bytes, dropped: int) -> str:
    text = data.decode("utf-8", errors="replace")
    if dropped:
        text += TRUNCATION_MARKER.format(omitted=dropped)
    return text


def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill the child and, on POSIX, its whole process group."""
    if proc.returncode is not None:
        return
    try:
        if sys.platform != "win32":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


async def run_process(
    argv: Sequence[str | Path],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
    max_output_bytes: int | None = None,
    max_memory_mb: int | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessResult:
    """Run a child process to completion under the given ceilings.

    Args:
        argv: Program and arguments. No shell is involved.
        cwd: Working directory for the child.
        timeout: Wall-clock limit in seconds. On expiry the process group is killed.
        max_output_bytes: Bytes kept per output stream.
        max_memory_mb: Virtual memory ceiling, enforced where the platform allows.
        env: Full environment for the child; inherits the parent's when None.

    Returns:
        ProcessResult: Captured output and exit metadata.
    """
    kwargs: dict[str, object] = {}
    if sys.platform != "win32":
        kwargs["start_new_session"] = True
    preexec = _preexec_for(max_memory_mb)
    if preexec is not None:
        kwargs["preexec_fn"] = preexec

    start_time = time.monotonic()
    proc = await asyncio.create_subprocess_exec(
        *(str(arg) for arg in argv),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=dict(env) if env is not None else None,
        **kwargs,  # type: ignore[arg-type]
    )

    readers = asyncio.gather(
        _read_capped(proc.stdout, max_output_bytes),
        _read_capped(proc.stderr, max_output_bytes),
    )
    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning(f"Process {proc.pid} exceeded {timeout}s limit. Killing process group.")
        _kill(proc)
        await proc.wait()
    except asyncio.CancelledError:
        _kill(proc)
        readers.cancel()
        raise

    try:
        (out, out_dropped), (err, err_dropped) = await asyncio.wait_for(readers, timeout=_DRAIN_TIMEOUT)
    except asyncio.TimeoutError:
        # A detached grandchild still holds the pipes open
        logger.warning(f"Output pipes of process {proc.pid} did not close; discarding remaining output.")
        out, out_dropped, err, err_dropped = b"", 0, b"", 0

    duration = time.monotonic() - start_time
    returncode = proc.returncode if proc.returncode is not None else -signal.SIGKILL

    return ProcessResult(
        stdout=_decode(out, out_dropped),
        stderr=_decode(err, err_dropped),
        returncode=returncode,
        timed_out=timed_out,
        truncated=bool(out_dropped or err_dropped),
        duration=duration,
    )

"""Async subprocess utilities.

Runs an external command without blocking the event loop and without shell
interpolation, under a wall-clock limit and with bounded output capture.

Key Features:
    - Argument-vector spawning only (``asyncio.create_subprocess_exec``)
    - Standard error captured up to a byte cap; standard output drained and
      discarded so the child never blocks on a full pipe
    - Timeout handling in two steps: SIGTERM to the child's process group,
      then SIGKILL after a grace period if the process is still alive
    - Cancellation of the awaiting task terminates the child the same way

Example:
    >>> outcome = await run_bounded(
    ...     ["git", "status"], cwd="/repo", timeout=30.0
    ... )
    >>> if outcome.timed_out:
    ...     print("took too long")

Thread Safety:
    Safe to call concurrently from multiple async tasks. Each call creates an
    independent subprocess with no shared state.
"""

import asyncio
import os
import signal
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

_READ_CHUNK = 64 * 1024


@dataclass
class ProcessOutcome:
    """Result of a bounded subprocess run.

    Attributes:
        returncode: Exit code; negative when the process died from a signal.
        stderr: Captured standard error, decoded with replacement.
        timed_out: True if the wall-clock limit was hit.
        killed: True if SIGTERM was not enough and SIGKILL was sent.
    """

    returncode: int | None
    stderr: str
    timed_out: bool = False
    killed: bool = False


async def terminate_process(process: asyncio.subprocess.Process, grace: float) -> bool:
    """Send SIGTERM to the process group, wait up to ``grace`` seconds, then SIGKILL.

    The child must have been started in its own session so that its process
    group id equals its pid; helpers it spawned are signalled with it.

    Returns:
        True if the process had to be killed.
    """
    if process.returncode is not None:
        return False
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    log.debug("process_terminate_sent", pid=process.pid)

    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
        return False
    except TimeoutError:
        pass

    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        return False
    log.warning("process_kill_sent", pid=process.pid, grace_seconds=grace)
    await process.wait()
    return True


async def run_bounded(
    argv: Sequence[str],
    *,
    cwd: Path | str,
    timeout: float,
    kill_grace: float = 5.0,
    stderr_limit: int = 8192,
    on_start: Callable[[asyncio.subprocess.Process], None] | None = None,
) -> ProcessOutcome:
    """Run ``argv`` in ``cwd`` and wait for it under a time limit.

    Args:
        argv: Executable followed by its arguments. Never passed to a shell.
        cwd: Working directory for the child.
        timeout: Wall-clock limit in seconds.
        kill_grace: Seconds between SIGTERM and SIGKILL on timeout.
        stderr_limit: Maximum number of stderr bytes kept.
        on_start: Called with the process handle right after spawning.

    Returns:
        ProcessOutcome describing how the process ended.

    Raises:
        FileNotFoundError: If the executable is not found.
        PermissionError: If the executable cannot be executed.
        asyncio.CancelledError: If the awaiting task is cancelled. The child
            is terminated before the cancellation propagates.
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    if on_start is not None:
        on_start(process)

    captured = bytearray()

    async def drain_stdout() -> None:
        if process.stdout is None:
            return
        while await process.stdout.read(_READ_CHUNK):
            pass

    async def capture_stderr() -> None:
        if process.stderr is None:
            return
        while chunk := await process.stderr.read(_READ_CHUNK):
            room = stderr_limit - len(captured)
            if room > 0:
                captured.extend(chunk[:room])

    readers = asyncio.gather(drain_stdout(), capture_stderr())
    timed_out = False
    killed = False
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except TimeoutError:
        timed_out = True
        log.warning("process_timed_out", pid=process.pid, timeout_seconds=timeout)
        killed = await terminate_process(process, kill_grace)
    except asyncio.CancelledError:
        await terminate_process(process, kill_grace)
        readers.cancel()
        raise

    # Grandchildren may keep the pipes open after the child exits
    try:
        await asyncio.wait_for(readers, timeout=max(kill_grace, 1.0))
    except TimeoutError:
        log.debug("process_pipes_left_open", pid=process.pid)

    return ProcessOutcome(
        returncode=process.returncode,
        stderr=bytes(captured).decode("utf-8", errors="replace"),
        timed_out=timed_out,
        killed=killed,
    )

"""Provide helpers shared by the external tool adapters."""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a finished subprocess."""

    args: tuple
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace").strip()

    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()


def format_command(args: Sequence[str]) -> str:
    """Render a command line for log messages."""
    return " ".join(shlex.quote(str(a)) for a in args)


async def run_command(
    args: Sequence[str],
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
    env: Optional[dict] = None,
    attempts: int = 1,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        args: Program and arguments
        cwd: Working directory, defaults to the current one
        timeout: Seconds to wait before the process is killed
        env: Environment for the child, defaults to the current one
        attempts: How many times a command that timed out is started

    Returns:
        CommandResult with exit code and captured output

    Raises:
        FileNotFoundError: If the program does not exist
        TimeoutError: If no attempt finished within ``timeout``
    """
    args = tuple(str(a) for a in args)
    for attempt in range(1, max(attempts, 1) + 1):
        logger.debug(f"Executing command: {format_command(args)}")
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            break
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            if attempt >= attempts:
                raise TimeoutError(
                    f"Command timed out after {timeout}s: {format_command(args)}"
                ) from None
            logger.warning(
                f"Command timed out after {timeout}s (attempt {attempt}/{attempts}), "
                f"retrying: {format_command(args)}"
            )
    result = CommandResult(args, proc.returncode, stdout, stderr)
    if not result.ok:
        logger.debug(
            f"Command exited with {result.returncode}: {result.stderr_text()}"
        )
    return result

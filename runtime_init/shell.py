"""Local command execution."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from runtime_init.errors import CommandFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    command: str
    exit_code: int
    stdout: str


async def run_shell_command(
    command: str,
    *,
    check: bool = True,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    """
    Run a command through /bin/sh and wait for it to finish.

    stdout and stderr are captured together.

    Args:
        command: Command line or path to an executable script
        check: Raise CommandFailed on a non-zero exit status
        env: Environment for the child (inherits the parent's when None)
        cwd: Working directory
        timeout: Seconds before the process is killed

    Returns:
        CmdResult with exit code and combined output

    Raises:
        CommandFailed: If check is set and the command exits non-zero,
            or if it times out
    """
    logger.info(f"CMD {command}")

    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        env=dict(env) if env is not None else None,
        cwd=cwd,
    )

    try:
        raw, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandFailed(command, -1, f"timed out after {timeout}s")

    output = raw.decode("utf-8", errors="replace") if raw else ""
    if output:
        logger.debug(f"OUTPUT {output.strip()}")

    result = CmdResult(command=command, exit_code=proc.returncode, stdout=output)
    if check and proc.returncode != 0:
        raise CommandFailed(command, proc.returncode, output)

    return result

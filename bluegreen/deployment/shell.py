"""Blue/green deployment: external command execution."""

import logging
import shlex
import shutil
import subprocess
from typing import Optional, Sequence, Union

from .exceptions import CommandError

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]


def split_command(command: Command) -> list:
    """Accept a shell-style string or an argv list."""
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


def command_available(executable: str) -> bool:
    """Whether ``executable`` resolves on PATH."""
    return shutil.which(executable) is not None


def run_command(
    command: Command,
    cwd: Optional[str] = None,
    timeout: Optional[float] = 600.0,
    env: Optional[dict] = None,
) -> subprocess.CompletedProcess:
    """Run ``command`` and raise CommandError if it does not exit cleanly."""
    argv = split_command(command)
    logger.debug("$ %s", " ".join(argv))
    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(argv, stderr=str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(argv, stderr=f"timed out after {timeout}s") from e

    if result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr or result.stdout or "")
    return result

"""Error taxonomy for the deployment pipeline.

Transient failures (probe timeouts, file locks) are retried where they
occur and never surface here unless retries run out. Everything raised
from this module is fatal to the current operation.
"""

from typing import Optional, Sequence


class DeploymentError(Exception):
    """Base class for all orchestrator errors."""


class InvalidSlotError(DeploymentError, ValueError):
    """Input outside the two known slots, or a state with live == staged."""


class StructuralError(DeploymentError):
    """A file or directory the pipeline depends on is missing or malformed."""


class MissingSlotError(StructuralError):
    """The slot's deployable unit does not exist on disk."""


class RoutingDirectiveError(StructuralError):
    """The proxy routing directive cannot be located or rewritten."""

    def __init__(self, message: str, config_path: str = "", pattern: str = ""):
        super().__init__(message)
        self.config_path = config_path
        self.pattern = pattern


class BuildError(DeploymentError):
    """Producing or relocating the slot's artifact failed."""


class CommandError(DeploymentError):
    """An external command exited non-zero or could not be started."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f"exit code {returncode}" if returncode is not None else "could not start"
        message = f"Command {' '.join(self.command)!r} failed ({detail})"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)

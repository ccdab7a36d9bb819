"""Blue/green deployment: data replication between slots."""

import logging
from typing import Callable, Optional

from .config import DeploymentConfig, Slot
from .shell import run_command, split_command

logger = logging.getLogger(__name__)


class DataSync:
    """Copies application data from the live slot into the staged one."""

    def sync(self, source: Slot, target: Slot) -> None:
        raise NotImplementedError


class CommandDataSync(DataSync):
    """Runs the migration script configured as ``sync_command``.

    The command template may use ``{source}`` and ``{target}``.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        runner: Callable[..., object] = run_command,
    ):
        self._config = config or DeploymentConfig()
        self._run = runner

    def sync(self, source: Slot, target: Slot) -> None:
        argv = [
            part.format(source=source.value, target=target.value)
            for part in split_command(self._config.sync_command)
        ]
        logger.info("Syncing data %s -> %s", source.value, target.value)
        self._run(argv, timeout=self._config.command_timeout)
        logger.info("Data sync completed")

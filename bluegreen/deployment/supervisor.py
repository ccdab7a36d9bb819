"""Blue/green deployment: backend process supervision."""

import json
import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from .config import DeploymentConfig, Slot
from .exceptions import CommandError
from .shell import command_available, run_command

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Starts and stops the backend process bound to a slot's port."""

    name = "none"

    @property
    def available(self) -> bool:
        return False

    def start(self, slot: Slot) -> bool:
        """Start (or restart) the slot's backend. False means manual start needed."""
        raise NotImplementedError

    def stop(self, slot: Slot) -> bool:
        raise NotImplementedError


class ManualSupervisor(ProcessSupervisor):
    """Stand-in when no supervisor is installed: tells the operator what to run."""

    name = "manual"

    def __init__(self, config: Optional[DeploymentConfig] = None):
        self._config = config or DeploymentConfig()

    def start(self, slot: Slot) -> bool:
        logger.warning(
            "No process supervisor found. Start %s manually: "
            "PORT=%d APP_ENVIRONMENT=%s node %s",
            slot.service_name,
            self._config.port_for(slot),
            slot.value,
            self._config.server_script,
        )
        return False

    def stop(self, slot: Slot) -> bool:
        logger.info("No process supervisor found, stop %s manually", slot.service_name)
        return False


class Pm2Supervisor(ProcessSupervisor):
    """Runs each slot's backend as a PM2 app named ``backend-<slot>``."""

    name = "pm2"

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        runner: Callable[..., object] = run_command,
    ):
        self._config = config or DeploymentConfig()
        self._run = runner

    @property
    def available(self) -> bool:
        return command_available("pm2")

    def ecosystem(self, slot: Slot) -> dict:
        """PM2 process file for ``slot``."""
        env_file = self._config.slot_dir(slot) / ".env"
        script = Path(self._config.server_script).resolve()
        return {
            "apps": [{
                "name": slot.service_name,
                "script": str(script),
                "cwd": str(script.parent),
                "env": {
                    "NODE_ENV": "production",
                    "PORT": self._config.port_for(slot),
                    "APP_ENVIRONMENT": slot.value,
                    "SERVICE_NAME": slot.service_name,
                    "ENV_FILE": str(env_file.resolve()),
                },
                "instances": 1,
                "exec_mode": "fork",
                "watch": False,
                "autorestart": True,
                "max_restarts": 10,
                "min_uptime": "10s",
            }]
        }

    def start(self, slot: Slot) -> bool:
        slot_dir = self._config.slot_dir(slot)
        _install_env_file(slot_dir)

        ecosystem_path = slot_dir / "ecosystem.config.json"
        ecosystem_path.write_text(json.dumps(self.ecosystem(slot), indent=2))

        try:
            self._run(["pm2", "delete", slot.service_name])
        except CommandError:
            pass  # not registered yet

        self._run(["pm2", "start", str(ecosystem_path)])
        logger.info(
            "Backend %s started with PM2 on port %d",
            slot.service_name,
            self._config.port_for(slot),
        )
        return True

    def stop(self, slot: Slot) -> bool:
        self._run(["pm2", "stop", slot.service_name])
        logger.info("Stopped %s", slot.service_name)
        return True


def _install_env_file(slot_dir: Path) -> None:
    source = slot_dir / "env"
    target = slot_dir / ".env"
    if source.exists():
        shutil.copyfile(source, target)
    elif not target.exists():
        logger.warning("No environment file in %s, backend will use defaults", slot_dir)


def detect_supervisor(config: Optional[DeploymentConfig] = None) -> ProcessSupervisor:
    """PM2 when installed, otherwise the manual fallback."""
    pm2 = Pm2Supervisor(config)
    if pm2.available:
        return pm2
    logger.warning("PM2 not found. Backends will need to be started manually")
    return ManualSupervisor(config)

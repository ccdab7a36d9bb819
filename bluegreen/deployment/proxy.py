"""Blue/green deployment: reverse proxy reload and restart."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import DeploymentConfig, ReloadOutcome
from .exceptions import CommandError
from .shell import run_command, split_command

logger = logging.getLogger(__name__)

Runner = Callable[..., object]


@dataclass
class ProxyTarget:
    """Where the proxy config lives and how to make nginx re-read it."""

    config_path: Path
    test_command: list
    reload_command: list
    restart_command: list
    in_docker: bool = False


class ProxyController:
    """Locates the active proxy config and reloads the proxy.

    When the ``proxy_container`` is running under Docker the docker
    variant of the config is edited (it is volume-mounted into the
    container) and nginx is driven through ``docker exec``.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        runner: Runner = run_command,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config or DeploymentConfig()
        self._run = runner
        self._sleep = sleep
        self._target: Optional[ProxyTarget] = None

    def detect(self) -> ProxyTarget:
        """Resolve host vs. docker proxy once and cache the answer."""
        if self._target is not None:
            return self._target

        container = self._config.proxy_container
        if self._docker_proxy_running():
            self._target = ProxyTarget(
                config_path=Path(self._config.proxy_docker_config),
                test_command=["docker", "exec", container, "nginx", "-t"],
                reload_command=["docker", "exec", container, "nginx", "-s", "reload"],
                restart_command=["docker", "restart", container],
                in_docker=True,
            )
            logger.info("Proxy runs in docker container %s", container)
        else:
            self._target = ProxyTarget(
                config_path=Path(self._config.proxy_config),
                test_command=["nginx", "-t"],
                reload_command=["nginx", "-s", "reload"],
                restart_command=split_command(self._config.proxy_restart_command),
            )
        return self._target

    @property
    def config_path(self) -> Path:
        return self.detect().config_path

    def reload(self) -> ReloadOutcome:
        """Graceful reload, then full restart, then give up.

        Never raises: the rewritten config on disk is authoritative, so a
        proxy that cannot be bounced is reported for manual action.
        """
        target = self.detect()
        timeout = self._config.proxy_command_timeout
        if target.in_docker:
            # let the volume mount catch up with the host write
            self._sleep(0.3)

        try:
            self._run(target.test_command, timeout=timeout)
            self._run(target.reload_command, timeout=timeout)
            logger.info("Proxy reloaded")
            return ReloadOutcome.RELOADED
        except CommandError as e:
            logger.warning("Proxy reload failed (%s), restarting", e)

        try:
            self._run(target.restart_command, timeout=timeout)
            if target.in_docker:
                self._sleep(2.0)
            logger.info("Proxy restarted with new configuration")
            return ReloadOutcome.RESTARTED
        except CommandError as e:
            logger.error(
                "Failed to reload or restart proxy: %s. Config at %s is updated; "
                "reload manually with: %s",
                e,
                target.config_path,
                " ".join(target.reload_command),
            )
            return ReloadOutcome.MANUAL_REQUIRED

    def _docker_proxy_running(self) -> bool:
        container = self._config.proxy_container
        try:
            result = self._run([
                "docker", "ps",
                "--filter", f"name={container}",
                "--format", "{{.Names}}",
            ], timeout=self._config.proxy_command_timeout)
        except CommandError:
            return False
        names = getattr(result, "stdout", "") or ""
        return container in names.split()

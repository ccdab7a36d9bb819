"""Blue/green deployment: front-end artifact build and relocation."""

import logging
import os
import shutil
import stat
import time
from pathlib import Path
from typing import Callable, List, Optional

from .config import DeploymentConfig, Slot
from .exceptions import BuildError, CommandError
from .shell import run_command

logger = logging.getLogger(__name__)


def force_delete(path: Path) -> None:
    """Remove a directory tree, clearing read-only bits that block deletion."""

    if not path.exists():
        return
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                os.chmod(os.path.join(root, name), stat.S_IWRITE | stat.S_IREAD)
            except OSError:
                pass  # rmtree reports anything that still blocks deletion
    shutil.rmtree(path)


class ArtifactBuilder:
    """Builds the front end for a slot into ``<frontend>/build-<slot>``."""

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        runner: Callable[..., object] = run_command,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config or DeploymentConfig()
        self._run = runner
        self._sleep = sleep

    @property
    def frontend_dir(self) -> Path:
        return Path(self._config.frontend_dir)

    def output_dir(self, slot: Slot) -> Path:
        return self.frontend_dir / f"build-{slot.value}"

    def stale_paths(self) -> List[Path]:
        base = self.frontend_dir
        return [
            base / "build",
            base / "build-blue",
            base / "build-green",
            base / "node_modules" / ".cache",
        ]

    def cleanup(self) -> List[Path]:
        """Best-effort removal of stale build output. Returns what was removed."""
        removed = []
        for path in self.stale_paths():
            if not path.exists():
                continue
            try:
                force_delete(path)
                removed.append(path)
                logger.info("Cleaned %s", path)
            except OSError as e:
                logger.warning("Could not clean %s: %s", path, e)
        return removed

    def build(self, slot: Slot, version: str) -> Path:
        """Build the front end for ``slot`` and move it into place."""
        env_file = self.frontend_dir / f"env.{slot.value}"
        if not env_file.exists():
            raise BuildError(f"Missing frontend env file for {slot.value}: {env_file}")
        shutil.copyfile(env_file, self.frontend_dir / ".env")

        logger.info("Building frontend for %s (version %s)", slot.value, version)
        cwd = str(self.frontend_dir)
        env = {**os.environ, "APP_VERSION": version, "APP_ENVIRONMENT": slot.value}
        try:
            if not (self.frontend_dir / "node_modules").exists():
                logger.info("Installing frontend dependencies")
                self._run(self._config.install_command, cwd=cwd,
                          timeout=self._config.command_timeout, env=env)
            self._run(self._config.build_command, cwd=cwd,
                      timeout=self._config.command_timeout, env=env)
        except CommandError as e:
            raise BuildError(f"Frontend build failed: {e}") from e

        dest = self.output_dir(slot)
        self.robust_move(self.frontend_dir / "build", dest)
        logger.info("Frontend built: %s", dest)
        return dest

    def robust_move(self, src: Path, dest: Path) -> None:
        """Replace ``dest`` with ``src``, riding out transient file locks.

        Delete-then-rename is retried with exponential backoff; once the
        retries are spent the tree is copied and the source deleted.
        """
        if not src.exists():
            raise BuildError(f"Build output does not exist: {src}")

        delay = self._config.move_retry_delay
        attempts = self._config.move_max_retries
        for attempt in range(1, attempts + 1):
            try:
                force_delete(dest)
                os.rename(src, dest)
                return
            except OSError as e:
                if attempt == attempts:
                    break
                logger.warning(
                    "Move attempt %d/%d failed: %s. Retrying in %.0fms",
                    attempt, attempts, e, delay * 1000,
                )
                self._sleep(delay)
                delay *= self._config.move_backoff_factor

        logger.info("Rename kept failing, copying %s to %s instead", src, dest)
        try:
            force_delete(dest)
            shutil.copytree(src, dest)
            force_delete(src)
        except OSError as e:
            raise BuildError(f"Could not move {src} to {dest}: {e}") from e

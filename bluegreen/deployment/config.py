"""Blue/green deployment: slots, statuses and configuration."""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .exceptions import InvalidSlotError

logger = logging.getLogger(__name__)

# Letter names used by operators who think of the slots as A/B.
_SLOT_ALIASES = {"a": "blue", "b": "green"}


class Slot(enum.Enum):
    """One of the two symmetric deployment targets."""

    BLUE = "blue"
    GREEN = "green"

    @classmethod
    def parse(cls, value) -> "Slot":
        """Coerce ``blue``/``green`` (or ``A``/``B``) into a Slot."""
        if isinstance(value, Slot):
            return value
        if not isinstance(value, str):
            raise InvalidSlotError(f"Invalid slot: {value!r}. Must be 'blue' or 'green'")
        key = value.strip().lower()
        key = _SLOT_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise InvalidSlotError(
                f"Invalid slot: {value!r}. Must be 'blue' or 'green'"
            ) from None

    def other(self) -> "Slot":
        return Slot.GREEN if self is Slot.BLUE else Slot.BLUE

    @property
    def service_name(self) -> str:
        """Process supervisor name for this slot's backend."""
        return f"backend-{self.value}"

    def __str__(self) -> str:
        return self.value


class HealthStatus(enum.Enum):
    """Classification of a single health probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNREACHABLE = "unreachable"


class RecordStatus(enum.Enum):
    """Outcome stored in a deployment record."""

    SUCCESS = "success"
    FAILED = "failed"


class DeploymentPhase(enum.Enum):
    """Pipeline phase of a single deployment attempt."""

    IDLE = "idle"
    CLEANING = "cleaning"
    VALIDATING = "validating"
    SYNCING = "syncing"
    BUILDING = "building"
    HEALTH_GATING = "health_gating"
    SWITCHING = "switching"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    FAILED = "failed"


class ReloadOutcome(enum.Enum):
    """How the reverse proxy picked up a rewritten configuration."""

    NOT_NEEDED = "not_needed"
    RELOADED = "reloaded"
    RESTARTED = "restarted"
    MANUAL_REQUIRED = "manual_required"


@dataclass
class DeploymentConfig:
    """Deployment configuration with defaults for a local checkout."""

    host: str = "localhost"
    blue_port: int = 5000
    green_port: int = 5001

    state_file: str = ".deployment-state.json"
    backend_dir: str = "backend"
    frontend_dir: str = "frontend"
    server_script: str = "backend/shared/server.js"

    proxy_config: str = "nginx/nginx.conf"
    proxy_docker_config: str = "nginx/nginx.docker.conf"
    proxy_container: str = "blue-green-nginx"
    routing_variable: str = "active_environment"
    proxy_restart_command: str = "systemctl restart nginx"
    proxy_command_timeout: float = 5.0

    build_command: str = "npm run build"
    install_command: str = "npm install"
    sync_command: str = "node database/migrations/migrate-blue-to-green.js {source} {target}"

    probe_timeout_ms: int = 3000
    health_check_interval: float = 5.0
    health_check_timeout: float = 30.0
    warmup_seconds: float = 5.0

    move_max_retries: int = 5
    move_retry_delay: float = 1.0
    move_backoff_factor: float = 1.5

    history_limit: int = 10
    command_timeout: float = 600.0

    monitor_interval: float = 30.0
    monitor_probe_timeout_ms: int = 5000
    error_rate_threshold: float = 0.05
    max_consecutive_failures: int = 3
    slow_response_ms: float = 2000.0

    @classmethod
    def from_settings(cls, settings) -> "DeploymentConfig":
        """Build a config from a ``bluegreen.settings.Settings`` instance."""
        values = {
            name: getattr(settings, name)
            for name in cls.__dataclass_fields__
            if hasattr(settings, name)
        }
        return cls(**values)

    def port_for(self, slot: Slot) -> int:
        return self.blue_port if slot is Slot.BLUE else self.green_port

    def base_url(self, slot: Slot) -> str:
        return f"http://{self.host}:{self.port_for(slot)}"

    def health_url(self, slot: Slot) -> str:
        return f"{self.base_url(slot)}/health"

    def slot_dir(self, slot: Slot) -> Path:
        """Directory holding the slot's deployable backend unit."""
        return Path(self.backend_dir) / slot.value

    @property
    def max_health_attempts(self) -> int:
        if self.health_check_interval <= 0:
            return 1
        return max(1, int(self.health_check_timeout // self.health_check_interval))

    def validate(self) -> Optional[str]:
        """Return a description of the first invalid setting, if any."""
        if self.blue_port == self.green_port:
            return "blue_port and green_port must differ"
        if not 0.0 <= self.error_rate_threshold <= 1.0:
            return "error_rate_threshold must be within [0, 1]"
        if self.max_consecutive_failures < 1:
            return "max_consecutive_failures must be at least 1"
        if self.history_limit < 1:
            return "history_limit must be at least 1"
        if self.slow_response_ms >= self.monitor_probe_timeout_ms:
            # slower replies time out and read as unreachable instead
            return "slow_response_ms must be below monitor_probe_timeout_ms"
        return None

"""Blue/green deployment: durable record of live/staged slots and history.

The state lives in a single human-editable JSON file. Each save rewrites
the whole document atomically (write to .tmp, then replace) so a crash
mid-write never leaves a half-written file behind.
"""

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config import DeploymentConfig, RecordStatus, Slot
from .exceptions import InvalidSlotError

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()


@dataclass(frozen=True)
class DeploymentRecord:
    """Outcome of one deployment attempt. Never modified once appended."""

    version: str
    slot: Slot
    status: RecordStatus
    timestamp: datetime = field(default_factory=_utcnow)
    error: Optional[str] = None

    @classmethod
    def success(cls, version: str, slot: Slot) -> "DeploymentRecord":
        return cls(version=version, slot=slot, status=RecordStatus.SUCCESS)

    @classmethod
    def failed(cls, version: str, slot: Slot, error: str) -> "DeploymentRecord":
        return cls(version=version, slot=slot, status=RecordStatus.FAILED, error=error)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "slot": self.slot.value,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        # "environment" is the key used by legacy camelCase state files.
        slot = data.get("slot", data.get("environment"))
        return cls(
            version=str(data.get("version", "")),
            slot=Slot.parse(slot),
            status=RecordStatus(data.get("status", RecordStatus.FAILED.value)),
            timestamp=_parse_time(data.get("timestamp")),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class DeploymentState:
    """Which slot is live, which is staged, and what happened recently.

    Values are immutable; every transition returns a new state with a
    fresh ``last_updated``.
    """

    live_slot: Slot = Slot.BLUE
    staged_slot: Slot = Slot.GREEN
    last_deployment: Optional[DeploymentRecord] = None
    history: Tuple[DeploymentRecord, ...] = ()
    last_updated: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.live_slot is self.staged_slot:
            raise InvalidSlotError(
                f"Staged slot must differ from live slot (both {self.live_slot.value})"
            )

    def with_live(self, slot: Slot) -> "DeploymentState":
        """Return a state where ``slot`` serves traffic and the other is staged."""
        return replace(
            self,
            live_slot=slot,
            staged_slot=slot.other(),
            last_updated=_utcnow(),
        )

    def with_record(
        self, record: DeploymentRecord, limit: int = HISTORY_LIMIT
    ) -> "DeploymentState":
        """Return a state with ``record`` appended and history trimmed."""
        history = (self.history + (record,))[-limit:]
        return replace(
            self,
            history=history,
            last_deployment=record,
            last_updated=_utcnow(),
        )

    def to_dict(self) -> dict:
        return {
            "live_slot": self.live_slot.value,
            "staged_slot": self.staged_slot.value,
            "last_deployment": (
                self.last_deployment.to_dict() if self.last_deployment else None
            ),
            "history": [r.to_dict() for r in self.history],
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentState":
        if not isinstance(data, dict):
            raise ValueError("state document must be a JSON object")
        live = Slot.parse(data.get("live_slot", data.get("currentEnvironment", "blue")))
        staged_raw = data.get("staged_slot", data.get("nextEnvironment"))
        staged = Slot.parse(staged_raw) if staged_raw else live.other()
        raw_history = data.get("history", data.get("deploymentHistory")) or []
        history = tuple(DeploymentRecord.from_dict(r) for r in raw_history)
        last = data.get("last_deployment", data.get("lastDeployment"))
        return cls(
            live_slot=live,
            staged_slot=staged,
            last_deployment=DeploymentRecord.from_dict(last) if last else None,
            history=history[-HISTORY_LIMIT:],
            last_updated=_parse_time(data.get("last_updated", data.get("lastUpdated"))),
        )


class DeploymentStateStore:
    """Owns the authoritative copy of DeploymentState.

    Callers never cache the state: they ``load()`` it, derive a new value
    and hand it back. Writes from threads of this process are serialized
    by an RLock; separate processes are not coordinated.

    Args:
        config: Deployment configuration (state file path, history limit).
        path: Overrides ``config.state_file``.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        path: Optional[str] = None,
    ):
        self._config = config or DeploymentConfig()
        self._path = Path(path or self._config.state_file)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> DeploymentState:
        """Load the state, creating and persisting defaults if absent.

        A corrupt file is logged and replaced in memory by defaults.
        """
        with self._lock:
            if not self._path.exists():
                state = DeploymentState()
                logger.info("No deployment state at %s, creating defaults", self._path)
                self.save(state)
                return state
            try:
                return self._read()
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(
                    "Corrupt deployment state at %s, using defaults: %s", self._path, e
                )
                return DeploymentState()

    def peek(self) -> Optional[DeploymentState]:
        """Read the state without creating it. None if missing or unreadable."""
        with self._lock:
            if not self._path.exists():
                return None
            try:
                return self._read()
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.debug("Deployment state unreadable at %s: %s", self._path, e)
                return None

    def save(self, state: DeploymentState) -> bool:
        """Atomically rewrite the state file. Failure is logged, not raised."""
        with self._lock:
            tmp_file = self._path.with_name(self._path.name + ".tmp")
            try:
                if self._path.parent and not self._path.parent.exists():
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_file, "w") as f:
                    json.dump(state.to_dict(), f, indent=2)
                    f.write("\n")
                tmp_file.replace(self._path)
                return True
            except OSError as e:
                logger.error("Failed to persist deployment state to %s: %s", self._path, e)
                return False

    def append_record(self, record: DeploymentRecord) -> DeploymentState:
        """Append ``record`` to history (trimmed), set it as last, and save."""
        with self._lock:
            state = self.load().with_record(record, limit=self._config.history_limit)
            self.save(state)
        logger.info(
            "Recorded %s deployment of %s to %s",
            record.status.value,
            record.version,
            record.slot.value,
        )
        return state

    def set_live(self, slot: Slot) -> DeploymentState:
        """Mark ``slot`` live and its counterpart staged, and save."""
        with self._lock:
            state = self.load().with_live(slot)
            self.save(state)
        return state

    def _read(self) -> DeploymentState:
        with open(self._path) as f:
            data = json.load(f)
        return DeploymentState.from_dict(data)

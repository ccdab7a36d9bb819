"""Blue/green deployment: read-only status snapshots."""

import logging
from typing import Optional

from .config import DeploymentConfig, RecordStatus, Slot
from .health import EnvironmentHealthProbe
from .state import DeploymentState, DeploymentStateStore

logger = logging.getLogger(__name__)


class StatusReporter:
    """Combines stored deployment state with fresh probes of both slots.

    Never writes: a missing state file is reported as the defaults a
    first deployment would start from.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        store: Optional[DeploymentStateStore] = None,
        probe: Optional[EnvironmentHealthProbe] = None,
    ):
        self._config = config or DeploymentConfig()
        self._store = store or DeploymentStateStore(self._config)
        self._probe = probe or EnvironmentHealthProbe(self._config)

    def current_state(self) -> DeploymentState:
        state = self._store.peek()
        if state is None:
            logger.info("No readable deployment state at %s, showing defaults", self._store.path)
            return DeploymentState()
        return state

    def snapshot(self, history_limit: int = 5) -> dict:
        """State, recent history and live health of both slots."""
        state = self.current_state()
        health = self._probe.probe_all()
        return {
            "live_slot": state.live_slot.value,
            "staged_slot": state.staged_slot.value,
            "last_deployment": (
                state.last_deployment.to_dict() if state.last_deployment else None
            ),
            "last_updated": state.last_updated.isoformat(),
            "slots": {
                slot.value: {
                    "health": health[slot].to_dict(),
                    "port": self._config.port_for(slot),
                    "url": self._config.base_url(slot),
                    "live": slot is state.live_slot,
                }
                for slot in Slot
            },
            "history": [r.to_dict() for r in state.history[-history_limit:]],
            "summary": self.summary(state),
        }

    def health_report(self) -> dict:
        """Probe results for both slots plus an overall verdict."""
        health = self._probe.probe_all()
        healthy = sum(1 for result in health.values() if result.is_healthy)
        if healthy == len(health):
            verdict = "both_healthy"
        elif healthy:
            verdict = "one_healthy"
        else:
            verdict = "none_healthy"
        return {
            "slots": {slot.value: result.to_dict() for slot, result in health.items()},
            "summary": verdict,
        }

    def summary(self, state: Optional[DeploymentState] = None) -> dict:
        """Aggregate statistics over the retained history."""
        history = (state or self.current_state()).history
        total = len(history)
        succeeded = sum(1 for r in history if r.status is RecordStatus.SUCCESS)
        return {
            "total": total,
            "succeeded": succeeded,
            "failed": total - succeeded,
            "success_rate": round(succeeded / total, 4) if total else 0.0,
        }

"""Blue/green deployment: automated failback on live-slot degradation."""

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .config import DeploymentConfig, Slot
from .health import EnvironmentHealthProbe
from .state import DeploymentStateStore
from .traffic import TrafficSwitcher

logger = logging.getLogger(__name__)


class MetricsBaseline:
    """Background error rate of a slot that passes every health signal.

    Replace with a query against a real metrics backend.
    """

    def error_rate(self, slot: Slot) -> float:
        raise NotImplementedError


class SimulatedBaseline(MetricsBaseline):
    """Nominal background noise, uniform in ``[0, ceiling)``."""

    def __init__(self, ceiling: float = 0.02, rng: Optional[random.Random] = None):
        self._ceiling = ceiling
        self._rng = rng or random.Random()

    def error_rate(self, slot: Slot) -> float:
        return self._rng.random() * self._ceiling


class ErrorRateEstimator:
    """Estimates the error rate of a slot as a float in ``[0, 1]``."""

    def estimate(self, slot: Slot) -> float:
        raise NotImplementedError


class HealthSignalEstimator(ErrorRateEstimator):
    """Derives an error rate from the slot's own health endpoint.

    unreachable / non-200 -> 1.0, self-reported unhealthy -> 0.8,
    database disconnected -> 0.6, slow response -> 0.3, otherwise the
    baseline's rate.
    """

    def __init__(
        self,
        probe: EnvironmentHealthProbe,
        config: Optional[DeploymentConfig] = None,
        baseline: Optional[MetricsBaseline] = None,
    ):
        self._probe = probe
        self._config = config or probe.config
        self._baseline = baseline or SimulatedBaseline()

    def estimate(self, slot: Slot) -> float:
        result = self._probe.probe(slot, self._config.monitor_probe_timeout_ms)
        if not result.reachable or result.http_status != 200:
            return 1.0
        payload = result.payload or {}
        if payload.get("status") != "healthy":
            return 0.8
        if payload.get("database") != "connected":
            return 0.6
        if result.response_time_ms > self._config.slow_response_ms:
            return 0.3
        return min(1.0, max(0.0, self._baseline.error_rate(slot)))


@dataclass
class RollbackNotification:
    """Emitted once per automated failback."""

    from_slot: Slot
    to_slot: Slot
    error_rate: float
    threshold: float
    event: str = "automated_rollback"
    reason: str = "high_error_rate"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "from_slot": self.from_slot.value,
            "to_slot": self.to_slot.value,
            "error_rate": self.error_rate,
            "threshold": self.threshold,
            "reason": self.reason,
        }


class RollbackMonitor:
    """Watches the live slot and fails back after sustained degradation.

    Runs one check immediately on ``start()`` and then every
    ``monitor_interval`` seconds on a daemon thread. ``stop()`` takes
    effect at the next polling boundary. A failback that itself fails
    halts the monitor for good: it never retries without an operator.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        store: Optional[DeploymentStateStore] = None,
        switcher: Optional[TrafficSwitcher] = None,
        estimator: Optional[ErrorRateEstimator] = None,
        notifier: Optional[Callable[[RollbackNotification], None]] = None,
    ):
        self._config = config or DeploymentConfig()
        self._store = store or DeploymentStateStore(self._config)
        probe = EnvironmentHealthProbe(self._config)
        self._switcher = switcher or TrafficSwitcher(self._config, probe=probe, store=self._store)
        self._estimator = estimator or HealthSignalEstimator(probe, self._config)
        self._notifier = notifier

        self.consecutive_failures = 0
        self.notifications: List[RollbackNotification] = []
        self.emergency: Optional[str] = None
        self.last_error_rate: Optional[float] = None

        self._stop_event = threading.Event()
        self._halted = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def threshold(self) -> float:
        return self._config.error_rate_threshold

    @property
    def limit(self) -> int:
        return self._config.max_consecutive_failures

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def halted(self) -> bool:
        """True once the emergency path has stopped the monitor."""
        return self._halted.is_set()

    def start(self) -> bool:
        """Start the loop. Returns False if already running or halted."""
        with self._lock:
            if self.running:
                logger.warning("Rollback monitoring already running")
                return False
            if self.halted:
                logger.error("Rollback monitor halted after a failed rollback: %s", self.emergency)
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, name="rollback-monitor", daemon=True
            )
            self._thread.start()
        logger.info(
            "Started rollback monitoring (interval=%.0fs, threshold=%.2f%%, limit=%d)",
            self._config.monitor_interval, self.threshold * 100, self.limit,
        )
        return True

    def stop(self) -> None:
        """Request the loop to end. No-op when not running."""
        with self._lock:
            if not self.running:
                return
            self._stop_event.set()
            thread = self._thread
        if thread is not threading.current_thread():
            thread.join(timeout=self._config.monitor_probe_timeout_ms / 1000.0 + 1.0)
        logger.info("Rollback monitoring stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop ends. Returns False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.check_and_rollback()
            if self.halted:
                return
            if self._stop_event.wait(self._config.monitor_interval):
                return

    def check_and_rollback(self) -> Optional[RollbackNotification]:
        """Run one monitoring cycle. Returns the notification if it failed back."""
        try:
            live = self.current_live_slot()
            error_rate = self._estimator.estimate(live)
        except Exception as e:
            self.consecutive_failures += 1
            logger.error(
                "Rollback monitor check failed (%d/%d): %s",
                self.consecutive_failures, self.limit, e,
            )
            return None

        self.last_error_rate = error_rate
        logger.info("%s error rate: %.2f%%", live.value, error_rate * 100)

        if error_rate > self.threshold:
            self.consecutive_failures += 1
            logger.warning(
                "High error rate on %s (%d/%d)",
                live.value, self.consecutive_failures, self.limit,
            )
        else:
            self.consecutive_failures = 0

        if self.consecutive_failures >= self.limit:
            self.consecutive_failures = 0
            return self.trigger_rollback(live, error_rate)
        return None

    def current_live_slot(self) -> Slot:
        """Live slot from the state file, else the proxy config, else blue."""
        state = self._store.peek()
        if state is not None:
            return state.live_slot
        routed = self._switcher.current_target()
        if routed is not None:
            return routed
        return Slot.BLUE

    def trigger_rollback(self, failed: Slot, error_rate: float) -> Optional[RollbackNotification]:
        """Fail back from ``failed`` to its counterpart."""
        target = failed.other()
        logger.warning("Triggering rollback from %s to %s", failed.value, target.value)
        try:
            result = self._switcher.switch_to(target)
        except Exception as e:
            self._emergency(failed, str(e))
            return None
        if not result.success:
            self._emergency(failed, result.error or "traffic switch failed")
            return None

        notification = RollbackNotification(
            from_slot=failed,
            to_slot=target,
            error_rate=error_rate,
            threshold=self.threshold,
        )
        self.notifications.append(notification)
        logger.warning(
            "AUTOMATED ROLLBACK TRIGGERED: %s -> %s",
            failed.value, target.value,
            extra={"notification": notification.to_dict()},
        )
        if self._notifier is not None:
            try:
                self._notifier(notification)
            except Exception as e:
                logger.error("Rollback notifier failed: %s", e)
        return notification

    def _emergency(self, failed: Slot, reason: str) -> None:
        self.emergency = f"Rollback from {failed.value} failed: {reason}"
        logger.critical("EMERGENCY: %s. Monitoring halted; operator action required", self.emergency)
        self._halted.set()
        self._stop_event.set()

"""Blue/green deployment: the deploy pipeline.

One call to ``DeploymentController.deploy`` walks a candidate slot through

    CLEANING -> VALIDATING -> SYNCING -> BUILDING -> HEALTH_GATING -> SWITCHING -> DONE

and ends by writing a DeploymentRecord. Anything that goes wrong once the
build has started sends the attempt through ROLLING_BACK, which stops the
candidate's process before recording the failure.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from bluegreen.logging_config import DeploymentContext, PerformanceTimer

from .build import ArtifactBuilder
from .config import DeploymentConfig, DeploymentPhase, Slot
from .exceptions import InvalidSlotError, MissingSlotError
from .health import EnvironmentHealthProbe
from .state import DeploymentRecord, DeploymentStateStore
from .supervisor import ProcessSupervisor, detect_supervisor
from .sync import CommandDataSync, DataSync
from .traffic import TrafficSwitcher

logger = logging.getLogger(__name__)

# Phases after which a failure must stop the candidate's process.
_ROLLBACK_PHASES = (
    DeploymentPhase.BUILDING,
    DeploymentPhase.HEALTH_GATING,
    DeploymentPhase.SWITCHING,
)


@dataclass
class DeployOptions:
    """Per-deployment switches."""

    skip_sync: bool = False
    skip_switch: bool = False
    # Accepted for CLI compatibility; traffic is always cut over in full.
    canary_percent: float = 0.0


@dataclass
class DeploymentAttempt:
    """In-flight bookkeeping for one run of the pipeline."""

    version: str
    slot: Slot
    deployment_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: DeploymentPhase = DeploymentPhase.IDLE
    phases: List[DeploymentPhase] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    rolled_back: bool = False


class _Abort(Exception):
    """Internal: stop the pipeline with a recorded reason."""


class DeploymentController:
    """Runs deployments against the staged slot.

    Collaborators default to the real implementations; tests inject
    stubs. ``sleep`` and ``clock`` drive the health-gating loop.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        store: Optional[DeploymentStateStore] = None,
        probe: Optional[EnvironmentHealthProbe] = None,
        switcher: Optional[TrafficSwitcher] = None,
        builder: Optional[ArtifactBuilder] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        data_sync: Optional[DataSync] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or DeploymentConfig()
        self._store = store or DeploymentStateStore(self._config)
        self._probe = probe or EnvironmentHealthProbe(self._config)
        self._switcher = switcher or TrafficSwitcher(
            self._config, probe=self._probe, store=self._store
        )
        self._builder = builder or ArtifactBuilder(self._config)
        self._supervisor = supervisor
        self._data_sync = data_sync or CommandDataSync(self._config)
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancellable_sleep
        self._clock = clock
        self._attempt: Optional[DeploymentAttempt] = None
        self._context: Optional[DeploymentContext] = None

    @property
    def config(self) -> DeploymentConfig:
        return self._config

    @property
    def phase(self) -> DeploymentPhase:
        return self._attempt.phase if self._attempt else DeploymentPhase.IDLE

    @property
    def last_attempt(self) -> Optional[DeploymentAttempt]:
        return self._attempt

    @property
    def supervisor(self) -> ProcessSupervisor:
        if self._supervisor is None:
            self._supervisor = detect_supervisor(self._config)
        return self._supervisor

    def cancel(self) -> None:
        """Stop health gating at its next polling boundary."""
        self._cancelled.set()

    def cleanup(self) -> list:
        """Remove stale build output. Never raises."""
        try:
            return self._builder.cleanup()
        except Exception as e:
            logger.warning("Pre-deployment cleanup failed: %s", e)
            return []

    def deploy(
        self,
        version: str = "manual",
        options: Optional[DeployOptions] = None,
        slot=None,
    ) -> bool:
        """Deploy ``version`` to ``slot`` (default: the staged slot).

        Returns True only when the pipeline reaches DONE. Never raises.
        """
        options = options or DeployOptions()
        self._cancelled.clear()
        try:
            state = self._store.load()
            target = Slot.parse(slot) if slot is not None else state.staged_slot
        except Exception as e:
            logger.error("Cannot start deployment: %s", e)
            return False

        attempt = DeploymentAttempt(version=version, slot=target)
        self._attempt = attempt
        with DeploymentContext(
            slot=target.value, version=version, deployment_id=attempt.deployment_id
        ) as context:
            self._context = context
            logger.info(
                "Starting deployment of %s to %s (live: %s)",
                version, target.value, state.live_slot.value,
            )
            if target is state.live_slot:
                # a failed attempt would stop the process serving traffic
                error = InvalidSlotError(
                    f"{target.value} is the live slot; deploy to {target.other().value} "
                    f"and switch traffic instead"
                )
                self._record_failure(attempt, str(error))
                return False
            try:
                self._run_pipeline(attempt, options, live=state.live_slot)
            except Exception as e:
                reason = str(e) or type(e).__name__
                if not isinstance(e, _Abort):
                    logger.exception("Deployment failed in %s", attempt.phase.value)
                if attempt.phase in _ROLLBACK_PHASES:
                    self._roll_back(attempt)
                self._record_failure(attempt, reason)
                return False

            self._enter(attempt, DeploymentPhase.DONE)
            attempt.completed_at = datetime.now(timezone.utc)
            self._store.append_record(DeploymentRecord.success(version, target))
            logger.info(
                "Successfully deployed %s to %s in %.1fs",
                version, target.value, context.elapsed_ms / 1000,
            )
            return True

    # ── Pipeline ─────────────────────────────────────────────────────

    def _run_pipeline(
        self, attempt: DeploymentAttempt, options: DeployOptions, live: Slot
    ) -> None:
        target = attempt.slot

        self._enter(attempt, DeploymentPhase.CLEANING)
        self.cleanup()

        self._enter(attempt, DeploymentPhase.VALIDATING)
        self._validate(target, live)

        if options.skip_sync:
            logger.info("Skipping data sync")
        else:
            self._enter(attempt, DeploymentPhase.SYNCING)
            self._sync(source=live, target=target)

        self._enter(attempt, DeploymentPhase.BUILDING)
        with PerformanceTimer(f"build {target.value}"):
            self._builder.build(target, attempt.version)
        if not self.supervisor.start(target):
            logger.warning("Manual start required for %s", target.service_name)
        logger.info("Waiting %.0fs for %s to warm up", self._config.warmup_seconds, target.value)
        self._sleep(self._config.warmup_seconds)

        self._enter(attempt, DeploymentPhase.HEALTH_GATING)
        if not self.await_healthy(target):
            raise _Abort("Health checks failed")

        if options.skip_switch:
            logger.info("Skipping traffic switch; %s is staged and healthy", target.value)
            return

        self._enter(attempt, DeploymentPhase.SWITCHING)
        if 0 < options.canary_percent < 100:
            logger.warning(
                "Gradual switching (%.0f%%) is not supported; switching 100%% of traffic",
                options.canary_percent,
            )
        result = self._switcher.switch_to(target)
        if not result.success:
            raise _Abort(result.error or f"Traffic switch to {target.value} failed")

    def _validate(self, target: Slot, live: Slot) -> None:
        slot_dir = self._config.slot_dir(target)
        if not slot_dir.is_dir():
            raise MissingSlotError(f"Environment directory {slot_dir.resolve()} does not exist")

        health = self._probe.probe(live)
        if health.is_healthy:
            payload = health.payload or {}
            logger.info(
                "Live slot %s is healthy (service=%s, database=%s)",
                live.value, payload.get("service"), payload.get("database"),
            )
        else:
            logger.warning(
                "Live slot %s is %s: %s",
                live.value, health.status.value, health.error,
            )

    def _sync(self, source: Slot, target: Slot) -> None:
        try:
            self._data_sync.sync(source, target)
        except Exception as e:
            logger.warning("Data sync failed, continuing deployment: %s", e)

    def await_healthy(self, slot: Slot) -> bool:
        """Poll ``slot`` until healthy, the gate times out, or cancel()."""
        interval = self._config.health_check_interval
        timeout = self._config.health_check_timeout
        max_attempts = self._config.max_health_attempts
        start = self._clock()

        for attempt in range(1, max_attempts + 1):
            if self._cancelled.is_set():
                logger.warning("Health gating for %s cancelled", slot.value)
                return False
            if attempt > 1 and self._clock() - start >= timeout:
                break

            result = self._probe.probe(slot)
            if result.is_healthy:
                logger.info(
                    "Health check passed for %s (attempt %d/%d)",
                    slot.value, attempt, max_attempts,
                )
                return True
            logger.info(
                "Health check attempt %d/%d for %s: %s (%s)",
                attempt, max_attempts, slot.value, result.status.value, result.error,
            )
            if attempt < max_attempts:
                self._sleep(interval)

        logger.error("Health checks timed out for %s", slot.value)
        return False

    def _roll_back(self, attempt: DeploymentAttempt) -> None:
        self._enter(attempt, DeploymentPhase.ROLLING_BACK)
        attempt.rolled_back = True
        logger.info("Rolling back deployment artifacts for %s", attempt.slot.value)
        try:
            self.supervisor.stop(attempt.slot)
        except Exception as e:
            logger.info("Stopping %s failed, ignoring: %s", attempt.slot.service_name, e)

    def _record_failure(self, attempt: DeploymentAttempt, reason: str) -> None:
        attempt.error = reason
        attempt.completed_at = datetime.now(timezone.utc)
        self._enter(attempt, DeploymentPhase.FAILED)
        logger.error("Deployment of %s to %s failed: %s", attempt.version, attempt.slot.value, reason)
        self._store.append_record(
            DeploymentRecord.failed(attempt.version, attempt.slot, reason)
        )

    def _enter(self, attempt: DeploymentAttempt, phase: DeploymentPhase) -> None:
        attempt.phase = phase
        attempt.phases.append(phase)
        if self._context is not None:
            self._context.bind(phase=phase.value)
        logger.debug("Deployment %s entered %s", attempt.deployment_id, phase.value)

    def _cancellable_sleep(self, seconds: float) -> None:
        self._cancelled.wait(seconds)

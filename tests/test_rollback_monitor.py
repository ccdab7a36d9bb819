"""Tests for the automated failback monitor and error-rate estimation."""

import random
import time

import pytest

from bluegreen.deployment import (
    DeploymentConfig,
    DeploymentStateStore,
    HealthSignalEstimator,
    HealthStatus,
    MetricsBaseline,
    RoutingDirectiveError,
    RollbackMonitor,
    SimulatedBaseline,
    Slot,
    SwitchResult,
)

from conftest import StubProbe, make_result


class ScriptedEstimator:
    """Returns queued error rates, then ``default``."""

    def __init__(self, *rates, default=0.0):
        self.rates = list(rates)
        self.default = default
        self.slots = []

    def estimate(self, slot):
        self.slots.append(slot)
        if not self.rates:
            return self.default
        rate = self.rates.pop(0)
        if isinstance(rate, Exception):
            raise rate
        return rate


class StubSwitcher:
    def __init__(self, store=None, success=True, error=None, routed=None):
        self.store = store
        self.success = success
        self.error = error
        self.routed = routed
        self.targets = []

    def switch_to(self, target):
        self.targets.append(target)
        if self.error is not None:
            raise self.error
        if self.success and self.store is not None:
            self.store.set_live(target)
        return SwitchResult(
            target=target,
            success=self.success,
            error=None if self.success else "Cannot switch: environment is unreachable",
        )

    def current_target(self):
        return self.routed


class FixedBaseline(MetricsBaseline):
    def error_rate(self, slot):
        return 0.01


class TestRollbackMonitor:
    """Tests for threshold counting and failback."""

    def setup_method(self):
        self.notified = []

    def _monitor(self, config, estimator, **switcher_kwargs):
        self.store = DeploymentStateStore(config)
        self.store.load()
        self.switcher = StubSwitcher(self.store, **switcher_kwargs)
        return RollbackMonitor(
            config,
            store=self.store,
            switcher=self.switcher,
            estimator=estimator,
            notifier=self.notified.append,
        )

    def test_rate_at_threshold_is_not_a_failure(self, config):
        monitor = self._monitor(config, ScriptedEstimator(0.05))
        monitor.check_and_rollback()
        assert monitor.consecutive_failures == 0

    def test_rate_above_threshold_counts(self, config):
        monitor = self._monitor(config, ScriptedEstimator(0.051))
        monitor.check_and_rollback()
        assert monitor.consecutive_failures == 1
        assert monitor.last_error_rate == 0.051

    def test_healthy_reading_resets_counter(self, config):
        monitor = self._monitor(config, ScriptedEstimator(1.0, 1.0, 0.0, 1.0, 1.0))
        for _ in range(5):
            monitor.check_and_rollback()
        assert monitor.consecutive_failures == 2
        assert self.switcher.targets == []

    def test_three_failures_trigger_rollback(self, config):
        monitor = self._monitor(config, ScriptedEstimator(1.0, 0.8, 0.6))
        assert monitor.check_and_rollback() is None
        assert monitor.check_and_rollback() is None
        notification = monitor.check_and_rollback()

        assert notification is not None
        assert self.switcher.targets == [Slot.GREEN]
        assert self.store.load().live_slot is Slot.GREEN
        assert monitor.consecutive_failures == 0
        assert self.notified == [notification]
        data = notification.to_dict()
        assert data["event"] == "automated_rollback"
        assert data["reason"] == "high_error_rate"
        assert data["from_slot"] == "blue"
        assert data["to_slot"] == "green"
        assert data["error_rate"] == 0.6
        assert data["threshold"] == 0.05

    def test_monitors_new_live_slot_after_rollback(self, config):
        estimator = ScriptedEstimator(1.0, 1.0, 1.0, 0.0)
        monitor = self._monitor(config, estimator)
        for _ in range(4):
            monitor.check_and_rollback()
        assert estimator.slots[-1] is Slot.GREEN

    def test_estimator_errors_count_as_failures(self, config):
        estimator = ScriptedEstimator(RuntimeError("probe crashed"), RuntimeError("again"), 1.0)
        monitor = self._monitor(config, estimator)
        for _ in range(3):
            monitor.check_and_rollback()
        assert self.switcher.targets == [Slot.GREEN]

    def test_failed_switch_halts_monitor(self, config):
        monitor = self._monitor(config, ScriptedEstimator(1.0, 1.0, 1.0), success=False)
        for _ in range(3):
            monitor.check_and_rollback()
        assert monitor.halted
        assert "unreachable" in monitor.emergency
        assert self.notified == []
        assert monitor.start() is False

    def test_switch_exception_halts_monitor(self, config):
        monitor = self._monitor(
            config, ScriptedEstimator(1.0, 1.0, 1.0),
            error=RoutingDirectiveError("set statement not found"),
        )
        for _ in range(3):
            monitor.check_and_rollback()
        assert monitor.halted
        assert self.store.load().live_slot is Slot.BLUE

    def test_notifier_failure_does_not_propagate(self, config):
        def broken(notification):
            raise RuntimeError("webhook down")

        monitor = self._monitor(config, ScriptedEstimator(1.0, 1.0, 1.0))
        monitor._notifier = broken
        for _ in range(3):
            monitor.check_and_rollback()
        assert len(monitor.notifications) == 1

    def test_custom_limit_and_threshold(self, config):
        config.max_consecutive_failures = 1
        config.error_rate_threshold = 0.5
        monitor = self._monitor(config, ScriptedEstimator(0.4, 0.6))
        assert monitor.check_and_rollback() is None
        assert monitor.check_and_rollback() is not None

    def test_live_slot_falls_back_to_proxy_then_blue(self, config):
        monitor = RollbackMonitor(
            config,
            store=DeploymentStateStore(config),
            switcher=StubSwitcher(routed=Slot.GREEN),
            estimator=ScriptedEstimator(),
        )
        assert monitor.current_live_slot() is Slot.GREEN
        monitor._switcher.routed = None
        assert monitor.current_live_slot() is Slot.BLUE

    def test_start_and_stop_are_idempotent(self, config):
        config.monitor_interval = 60.0
        estimator = ScriptedEstimator()
        monitor = self._monitor(config, estimator)

        assert monitor.start() is True
        assert monitor.start() is False
        deadline = time.monotonic() + 2.0
        while not estimator.slots and time.monotonic() < deadline:
            time.sleep(0.01)
        assert estimator.slots == [Slot.BLUE]

        monitor.stop()
        assert not monitor.running
        monitor.stop()
        assert monitor.wait(0.1)

    def test_stop_when_never_started(self, config):
        monitor = self._monitor(config, ScriptedEstimator())
        monitor.stop()
        assert monitor.wait(0.1)

    def test_loop_exits_on_emergency(self, config):
        config.monitor_interval = 0.01
        config.max_consecutive_failures = 1
        monitor = self._monitor(config, ScriptedEstimator(default=1.0), success=False)
        monitor.start()
        assert monitor.wait(2.0)
        assert monitor.halted
        assert self.switcher.targets == [Slot.GREEN]


class TestHealthSignalEstimator:
    """Tests for mapping health signals to error rates."""

    def setup_method(self):
        self.config = DeploymentConfig()
        self.probe = StubProbe(self.config)
        self.estimator = HealthSignalEstimator(self.probe, self.config, FixedBaseline())

    def test_unreachable(self):
        self.probe.set_default(Slot.BLUE, HealthStatus.UNREACHABLE)
        assert self.estimator.estimate(Slot.BLUE) == 1.0

    def test_non_200(self):
        self.probe.enqueue(Slot.BLUE, make_result(Slot.BLUE, HealthStatus.UNHEALTHY, http_status=500))
        assert self.estimator.estimate(Slot.BLUE) == 1.0

    def test_self_reported_unhealthy(self):
        self.probe.set_default(Slot.BLUE, HealthStatus.UNHEALTHY)
        assert self.estimator.estimate(Slot.BLUE) == 0.8

    def test_database_disconnected(self):
        payload = {"status": "healthy", "database": "disconnected"}
        self.probe.enqueue(Slot.BLUE, make_result(Slot.BLUE, payload=payload))
        assert self.estimator.estimate(Slot.BLUE) == 0.6

    def test_slow_response(self):
        self.probe.enqueue(Slot.BLUE, make_result(Slot.BLUE, response_time_ms=3000.0))
        assert self.estimator.estimate(Slot.BLUE) == 0.3

    def test_nominal_uses_baseline(self):
        assert self.estimator.estimate(Slot.GREEN) == 0.01

    def test_simulated_baseline_is_bounded_and_seedable(self):
        first = SimulatedBaseline(rng=random.Random(7))
        second = SimulatedBaseline(rng=random.Random(7))
        rates = [first.error_rate(Slot.BLUE) for _ in range(50)]
        assert all(0.0 <= r < 0.02 for r in rates)
        assert rates == [second.error_rate(Slot.BLUE) for _ in range(50)]

    def test_defaults_to_simulated_baseline(self):
        estimator = HealthSignalEstimator(self.probe)
        assert 0.0 <= estimator.estimate(Slot.BLUE) < 0.02

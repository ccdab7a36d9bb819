"""Command line entry point for the blue/green orchestrator.

Usage:
    python -m bluegreen deploy green 1.2.0
    python -m bluegreen switch [blue|green]
    python -m bluegreen status
    python -m bluegreen health
    python -m bluegreen cleanup
    python -m bluegreen monitor [--once]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from bluegreen.deployment import (
    DeploymentConfig,
    DeploymentController,
    DeploymentError,
    DeploymentStateStore,
    DeployOptions,
    EnvironmentHealthProbe,
    RollbackMonitor,
    Slot,
    StatusReporter,
    TrafficSwitcher,
)
from bluegreen.lifecycle import SignalHandler
from bluegreen.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from bluegreen.settings import get_settings

logger = logging.getLogger("bluegreen.cli")


def _slot(value: str) -> Slot:
    try:
        return Slot.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m bluegreen",
        description="Blue/green deployment orchestrator",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format", type=str, default="console",
        choices=[f.value for f in LogFormat],
        help="Log output format (default: console)",
    )
    parser.add_argument(
        "--state-file", type=str, default=None,
        help="Deployment state file (default: BLUEGREEN_STATE_FILE or .deployment-state.json)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    deploy = commands.add_parser("deploy", help="Build, health-gate and promote a slot")
    deploy.add_argument("slot", type=_slot, help="Target slot: blue|green (or A|B)")
    deploy.add_argument("version", nargs="?", default="manual", help="Version label")
    deploy.add_argument("--skip-sync", action="store_true", help="Skip data sync")
    deploy.add_argument("--skip-switch", action="store_true", help="Leave traffic where it is")
    deploy.add_argument(
        "--canary", type=float, default=0.0,
        help="Requested canary percentage (traffic is still switched in full)",
    )

    switch = commands.add_parser("switch", help="Point live traffic at a slot")
    switch.add_argument("slot", type=_slot, nargs="?", default=None,
                        help="Target slot (default: the staged slot)")

    commands.add_parser("status", help="Show deployment state and slot health")
    commands.add_parser("health", help="Probe both slots")
    commands.add_parser("cleanup", help="Remove stale build output")

    monitor = commands.add_parser("monitor", help="Watch the live slot and fail back")
    monitor.add_argument("--once", action="store_true", help="Run a single check and exit")
    monitor.add_argument("--interval", type=float, default=None, help="Seconds between checks")
    monitor.add_argument("--threshold", type=float, default=None, help="Error rate threshold")

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> DeploymentConfig:
    """Settings from the environment, then CLI overrides."""
    config = DeploymentConfig.from_settings(get_settings())
    if args.state_file:
        config = replace(config, state_file=args.state_file)
    if getattr(args, "interval", None) is not None:
        config = replace(config, monitor_interval=args.interval)
    if getattr(args, "threshold", None) is not None:
        config = replace(config, error_rate_threshold=args.threshold)
    problem = config.validate()
    if problem:
        raise DeploymentError(f"Invalid configuration: {problem}")
    return config


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_deploy(args: argparse.Namespace, config: DeploymentConfig) -> int:
    controller = DeploymentController(config)
    options = DeployOptions(
        skip_sync=args.skip_sync,
        skip_switch=args.skip_switch,
        canary_percent=args.canary,
    )
    ok = controller.deploy(args.version, options, slot=args.slot)
    return 0 if ok else 1


def cmd_switch(args: argparse.Namespace, config: DeploymentConfig) -> int:
    store = DeploymentStateStore(config)
    target = args.slot or store.load().staged_slot
    switcher = TrafficSwitcher(config, store=store)
    result = switcher.switch_to(target)
    _print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_status(args: argparse.Namespace, config: DeploymentConfig) -> int:
    _print_json(StatusReporter(config).snapshot())
    return 0


def cmd_health(args: argparse.Namespace, config: DeploymentConfig) -> int:
    _print_json(StatusReporter(config).health_report())
    return 0


def cmd_cleanup(args: argparse.Namespace, config: DeploymentConfig) -> int:
    removed = DeploymentController(config).cleanup()
    print(f"Cleanup completed ({len(removed)} directories removed)")
    return 0


def cmd_monitor(args: argparse.Namespace, config: DeploymentConfig) -> int:
    probe = EnvironmentHealthProbe(config)
    store = DeploymentStateStore(config)
    monitor = RollbackMonitor(
        config,
        store=store,
        switcher=TrafficSwitcher(config, probe=probe, store=store),
    )
    if args.once:
        monitor.check_and_rollback()
        return 1 if monitor.halted else 0

    signals = SignalHandler()
    signals.register_shutdown_callback(monitor.stop)
    signals.register_signals()
    try:
        monitor.start()
        # short joins keep the main thread responsive to signals
        while not monitor.wait(1.0):
            pass
    finally:
        signals.restore_signals()
    if signals.shutdown_requested:
        logger.info("Monitor stopped on request")
    return 1 if monitor.halted else 0


COMMANDS = {
    "deploy": cmd_deploy,
    "switch": cmd_switch,
    "status": cmd_status,
    "health": cmd_health,
    "cleanup": cmd_cleanup,
    "monitor": cmd_monitor,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(LoggingConfig(
        level=LogLevel(args.log_level),
        format=LogFormat(args.log_format),
        include_caller=False,
    ))
    try:
        config = load_config(args)
        return COMMANDS[args.command](args, config)
    except DeploymentError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""Structured logging for the orchestrator.

Provides JSON or console output, deployment context propagation,
and timing helpers for slow probes and pipeline phases.
"""

from bluegreen.logging_config.config import LogFormat, LoggingConfig, LogLevel
from bluegreen.logging_config.context import DeploymentContext, generate_deployment_id
from bluegreen.logging_config.performance import PerformanceTimer, log_performance
from bluegreen.logging_config.setup import configure_logging

__all__ = [
    "DeploymentContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "configure_logging",
    "generate_deployment_id",
    "log_performance",
]

"""Blue/green deployment orchestration."""

from .build import ArtifactBuilder
from .config import (
    DeploymentConfig,
    DeploymentPhase,
    HealthStatus,
    RecordStatus,
    ReloadOutcome,
    Slot,
)
from .controller import DeploymentController, DeployOptions
from .exceptions import (
    BuildError,
    CommandError,
    DeploymentError,
    InvalidSlotError,
    MissingSlotError,
    RoutingDirectiveError,
    StructuralError,
)
from .health import EnvironmentHealthProbe, HealthResult
from .proxy import ProxyController
from .rollback import (
    ErrorRateEstimator,
    HealthSignalEstimator,
    MetricsBaseline,
    RollbackMonitor,
    RollbackNotification,
    SimulatedBaseline,
)
from .state import DeploymentRecord, DeploymentState, DeploymentStateStore
from .status import StatusReporter
from .supervisor import ManualSupervisor, Pm2Supervisor, ProcessSupervisor
from .sync import CommandDataSync, DataSync
from .traffic import DirectiveMatcher, SwitchResult, TrafficSwitcher

__all__ = [
    # Config
    "DeploymentConfig",
    "DeploymentPhase",
    "HealthStatus",
    "RecordStatus",
    "ReloadOutcome",
    "Slot",
    # Errors
    "BuildError",
    "CommandError",
    "DeploymentError",
    "InvalidSlotError",
    "MissingSlotError",
    "RoutingDirectiveError",
    "StructuralError",
    # Health
    "EnvironmentHealthProbe",
    "HealthResult",
    # State
    "DeploymentRecord",
    "DeploymentState",
    "DeploymentStateStore",
    # Traffic
    "DirectiveMatcher",
    "ProxyController",
    "SwitchResult",
    "TrafficSwitcher",
    # Pipeline
    "ArtifactBuilder",
    "CommandDataSync",
    "DataSync",
    "DeployOptions",
    "DeploymentController",
    "ManualSupervisor",
    "Pm2Supervisor",
    "ProcessSupervisor",
    # Rollback
    "ErrorRateEstimator",
    "HealthSignalEstimator",
    "MetricsBaseline",
    "RollbackMonitor",
    "RollbackNotification",
    "SimulatedBaseline",
    # Status
    "StatusReporter",
]

"""Deployment Context Management.

Binds the deployment ID, target slot and version to every log entry
emitted while a deployment runs, using contextvars.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_deployment_id_var: ContextVar[str] = ContextVar("deployment_id", default="")
_slot_var: ContextVar[str] = ContextVar("slot", default="")
_version_var: ContextVar[str] = ContextVar("version", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_deployment_id() -> str:
    """Generate a unique deployment ID using UUID4."""
    return str(uuid.uuid4())


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    deployment_id = _deployment_id_var.get()
    if deployment_id:
        ctx["deployment_id"] = deployment_id
    slot = _slot_var.get()
    if slot:
        ctx["slot"] = slot
    version = _version_var.get()
    if version:
        ctx["version"] = version
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class DeploymentContext:
    """Context manager for deployment-scoped logging context.

    Example:
        with DeploymentContext(slot="green", version="1.2.0"):
            logger.info("building")  # includes deployment_id, slot, version
    """

    slot: str = ""
    version: str = ""
    deployment_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.deployment_id:
            self.deployment_id = generate_deployment_id()

    def __enter__(self) -> "DeploymentContext":
        self._tokens = [
            (_deployment_id_var, _deployment_id_var.set(self.deployment_id)),
            (_slot_var, _slot_var.set(self.slot)),
            (_version_var, _version_var.set(self.version)),
            (_extra_context_var, _extra_context_var.set(self.extra.copy())),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)

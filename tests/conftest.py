"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from bluegreen.deployment.config import (  # noqa: E402
    DeploymentConfig,
    HealthStatus,
    ReloadOutcome,
    Slot,
)
from bluegreen.deployment.health import HealthResult  # noqa: E402

NGINX_CONF = """\
events {}

http {
    map $active_environment $backend_port {
        blue  5000;
        green 5001;
    }

    server {
        listen 80;
        set $active_environment "blue";

        location / {
            proxy_pass http://127.0.0.1:$backend_port;
        }
    }
}
"""


def make_result(slot, status=HealthStatus.HEALTHY, payload=None, **kwargs):
    """Build a HealthResult with a realistic payload for ``status``."""
    slot = Slot.parse(slot)
    if status is HealthStatus.UNREACHABLE:
        return HealthResult(slot=slot, status=status, error="connection refused", **kwargs)
    if payload is None:
        payload = {
            "status": "healthy" if status is HealthStatus.HEALTHY else "degraded",
            "database": "connected",
            "service": f"backend-{slot.value}",
            "environment": slot.value,
            "timestamp": "2026-10-19T12:00:00Z",
        }
    kwargs.setdefault("http_status", 200)
    return HealthResult(slot=slot, status=status, payload=payload, **kwargs)


class StubProbe:
    """Health probe returning scripted results per slot.

    Queued results are consumed first; after that ``default`` applies.
    """

    def __init__(self, config=None):
        self.config = config or DeploymentConfig()
        self.queue = {Slot.BLUE: [], Slot.GREEN: []}
        self.default = {Slot.BLUE: HealthStatus.HEALTHY, Slot.GREEN: HealthStatus.HEALTHY}
        self.calls = []

    def set_default(self, slot, status):
        self.default[Slot.parse(slot)] = status

    def enqueue(self, slot, *items):
        self.queue[Slot.parse(slot)].extend(items)

    def probe(self, slot, timeout_ms=None):
        slot = Slot.parse(slot)
        self.calls.append(slot)
        item = self.queue[slot].pop(0) if self.queue[slot] else self.default[slot]
        if isinstance(item, HealthResult):
            return item
        return make_result(slot, item)

    def probe_all(self, timeout_ms=None):
        return {slot: self.probe(slot, timeout_ms) for slot in Slot}


class StubProxy:
    """Proxy controller that edits a real file but never runs nginx."""

    def __init__(self, config_path, outcome=ReloadOutcome.RELOADED):
        self.config_path = Path(config_path)
        self.outcome = outcome
        self.reloads = 0

    def reload(self):
        self.reloads += 1
        return self.outcome


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temp directory with instant warm-up."""
    backend = tmp_path / "backend"
    (backend / "blue").mkdir(parents=True)
    (backend / "green").mkdir(parents=True)
    nginx = tmp_path / "nginx.conf"
    nginx.write_text(NGINX_CONF)
    return DeploymentConfig(
        state_file=str(tmp_path / "state.json"),
        proxy_config=str(nginx),
        backend_dir=str(backend),
        frontend_dir=str(tmp_path / "frontend"),
        warmup_seconds=0.0,
    )

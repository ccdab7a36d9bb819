"""Blue/green deployment: per-slot health probing."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from bluegreen.logging_config import log_performance

from .config import DeploymentConfig, HealthStatus, Slot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthResult:
    """Outcome of one GET /health against one slot."""

    slot: Slot
    status: HealthStatus
    http_status: Optional[int] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    response_time_ms: float = 0.0

    @property
    def is_healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    @property
    def reachable(self) -> bool:
        return self.status is not HealthStatus.UNREACHABLE

    def to_dict(self) -> dict:
        return {
            "slot": self.slot.value,
            "status": self.status.value,
            "http_status": self.http_status,
            "payload": self.payload,
            "error": self.error,
            "response_time_ms": round(self.response_time_ms, 1),
        }


class EnvironmentHealthProbe:
    """Issues single health checks against a slot's backend.

    Network failures are encoded in the returned HealthResult and never
    raised. Pass ``client`` to reuse a connection pool or to inject a
    transport in tests.
    """

    def __init__(
        self,
        config: Optional[DeploymentConfig] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._config = config or DeploymentConfig()
        self._client = client

    @property
    def config(self) -> DeploymentConfig:
        return self._config

    @log_performance(threshold_ms=1000)
    def probe(self, slot: Slot, timeout_ms: Optional[int] = None) -> HealthResult:
        """Probe ``slot`` once and classify the response."""
        slot = Slot.parse(slot)
        timeout = (timeout_ms or self._config.probe_timeout_ms) / 1000.0
        url = self._config.health_url(slot)

        start = time.perf_counter()
        try:
            response = self._get(url, timeout)
        except httpx.HTTPError as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("Health probe %s unreachable: %s", url, exc)
            return HealthResult(
                slot=slot,
                status=HealthStatus.UNREACHABLE,
                error=str(exc) or type(exc).__name__,
                response_time_ms=elapsed,
            )
        elapsed = (time.perf_counter() - start) * 1000

        payload = _json_object(response)
        if response.status_code != 200:
            return HealthResult(
                slot=slot,
                status=HealthStatus.UNHEALTHY,
                http_status=response.status_code,
                payload=payload,
                error=f"HTTP {response.status_code}",
                response_time_ms=elapsed,
            )

        reported = payload.get("status") if payload is not None else None
        if reported != HealthStatus.HEALTHY.value:
            return HealthResult(
                slot=slot,
                status=HealthStatus.UNHEALTHY,
                http_status=response.status_code,
                payload=payload,
                error=f"service reported status {reported!r}",
                response_time_ms=elapsed,
            )

        return HealthResult(
            slot=slot,
            status=HealthStatus.HEALTHY,
            http_status=response.status_code,
            payload=payload,
            response_time_ms=elapsed,
        )

    def probe_all(self, timeout_ms: Optional[int] = None) -> Dict[Slot, HealthResult]:
        """Probe both slots."""
        return {slot: self.probe(slot, timeout_ms) for slot in Slot}

    def _get(self, url: str, timeout: float) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, timeout=timeout)
        with httpx.Client(timeout=timeout) as client:
            return client.get(url)


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

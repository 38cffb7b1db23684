"""Periodic health evaluation of registered systems."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from contextlib import suppress
from pathlib import Path
from typing import Any

from .broadcaster import Broadcaster
from .errors import NotFoundError
from .models import Alert, SystemDescriptor, SystemStatus, utcnow
from .registry import Registry

LOGGER = logging.getLogger(__name__)

DEFAULT_ALERT_LIMIT = 100
HEALTH_LEVELS = ("healthy", "warning", "error")


def evaluate(descriptor: SystemDescriptor) -> tuple[str, str]:
    """Return ``(health, message)`` where health is healthy, warning or error."""
    if not Path(descriptor.path).exists():
        return "error", f"project path {descriptor.path} is missing"
    if descriptor.status == SystemStatus.ERROR:
        return "error", descriptor.error_message or "last analysis failed"
    if descriptor.status == SystemStatus.NEEDS_SETUP:
        return "warning", "dependencies are not installed"
    return "healthy", "ok"


class HealthMonitor:
    def __init__(
        self,
        registry: Registry,
        broadcaster: Broadcaster,
        *,
        interval: float = 30.0,
        alert_limit: int = DEFAULT_ALERT_LIMIT,
    ) -> None:
        self._registry = registry
        self._broadcaster = broadcaster
        self._interval = max(interval, 1.0)
        self._alerts: deque[Alert] = deque(maxlen=alert_limit)
        self._health: dict[str, str] = {}
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                await self.check_once()
        except asyncio.CancelledError:
            LOGGER.debug("Health monitor stopped")
            raise

    async def check_once(self) -> list[Alert]:
        raised: list[Alert] = []
        systems = self._registry.get_all()
        results = await asyncio.to_thread(lambda: [(d, evaluate(d)) for d in systems])
        known = {descriptor.id for descriptor in systems}
        for system_id in list(self._health):
            if system_id not in known:
                del self._health[system_id]

        for descriptor, (health, message) in results:
            previous = self._health.get(descriptor.id)
            self._health[descriptor.id] = health
            # Only transitions into an unhealthy state raise an alert.
            if health == "healthy" or health == previous:
                continue
            alert = Alert(system_id=descriptor.id, level=health, message=message)
            self._alerts.appendleft(alert)
            raised.append(alert)
            LOGGER.warning("Health %s for %s: %s", health, descriptor.id, message)
            self._broadcaster.emit(descriptor.id, "alert", alert.to_dict())
        return raised

    def health(self) -> dict[str, str]:
        return dict(self._health)

    def alerts(
        self,
        system_id: str | None = None,
        limit: int = 50,
        *,
        resolved: bool | None = None,
    ) -> list[Alert]:
        alerts = [
            alert
            for alert in self._alerts
            if (system_id is None or alert.system_id == system_id)
            and (resolved is None or alert.resolved == resolved)
        ]
        return alerts[: max(limit, 0)]

    def resolve_alert(self, alert_id: str) -> Alert:
        for alert in self._alerts:
            if alert.id == alert_id:
                break
        else:
            raise NotFoundError(f"alert '{alert_id}' not found")
        if alert.resolve():
            LOGGER.info("Resolved alert %s for %s", alert_id, alert.system_id)
            self._broadcaster.emit(alert.system_id, "alert-resolved", alert.to_dict())
        return alert

    async def system_health(self, system_id: str) -> dict[str, Any]:
        """Evaluate one system now, without recording a transition."""
        descriptor = self._registry.get(system_id)
        health, message = await asyncio.to_thread(evaluate, descriptor)
        return {
            "system_id": system_id,
            "status": descriptor.status.value,
            "health": health,
            "message": message,
            "active_alerts": [alert.to_dict() for alert in self._active_alerts(system_id)],
            "checked_at": utcnow().isoformat(),
        }

    async def overview(self) -> dict[str, Any]:
        systems = self._registry.get_all()
        results = await asyncio.to_thread(lambda: [evaluate(descriptor)[0] for descriptor in systems])
        health_counts = Counter(results)
        status_counts = Counter(descriptor.status.value for descriptor in systems)
        return {
            "total_systems": len(systems),
            "status": {status.value: status_counts.get(status.value, 0) for status in SystemStatus},
            "health": {level: health_counts.get(level, 0) for level in HEALTH_LEVELS},
            "active_alerts": [alert.to_dict() for alert in self._active_alerts()],
            "timestamp": utcnow().isoformat(),
        }

    def _active_alerts(self, system_id: str | None = None) -> list[Alert]:
        return self.alerts(system_id, limit=len(self._alerts), resolved=False)

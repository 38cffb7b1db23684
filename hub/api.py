"""REST API routes."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from aiohttp import web

from .analyzer import inspect_path
from .errors import HubError, NotFoundError, ValidationError
from .models import Job
from .monitor import HealthMonitor
from .registry import Registry
from .runner import Runner
from .tracker import JobTracker

LOGGER = logging.getLogger(__name__)


def _error_payload(kind: str, message: str) -> dict[str, Any]:
    return {"error": {"kind": kind, "message": message}}


@web.middleware
async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    try:
        return await handler(request)
    except HubError as exc:
        return web.json_response({"error": exc.to_dict()}, status=exc.http_status)
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        kind = "not_found" if exc.status == 404 else "http"
        return web.json_response(_error_payload(kind, exc.reason), status=exc.status)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response(_error_payload("internal", str(exc)), status=500)


class ApiHandler:
    def __init__(
        self,
        registry: Registry,
        runner: Runner,
        tracker: JobTracker,
        monitor: HealthMonitor | None = None,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._tracker = tracker
        self._monitor = monitor
        self._started_at = time.monotonic()

    def routes(self) -> tuple[web.RouteDef, ...]:
        return (
            web.get("/api/health", self.health),
            web.get("/api/systems", self.list_systems),
            web.post("/api/systems", self.create_system),
            web.post("/api/systems/validate-path", self.validate_path),
            web.post("/api/systems/discover", self.discover_systems),
            web.get("/api/systems/{system_id}", self.get_system),
            web.put("/api/systems/{system_id}", self.update_system),
            web.delete("/api/systems/{system_id}", self.delete_system),
            web.post("/api/systems/{system_id}/refresh", self.refresh_system),
            web.get("/api/deploy/{system_id}/status", self.deploy_status),
            web.get("/api/deploy/{system_id}/environments", self.environments),
            web.post("/api/deploy/{system_id}/build", self.start_build),
            web.post("/api/deploy/{system_id}/deploy", self.start_deploy),
            web.post("/api/deploy/{system_id}/rollback", self.start_rollback),
            web.get("/api/deploy/{system_id}/active", self.system_active_jobs),
            web.get("/api/deploy/{system_id}/history", self.system_history),
            web.get("/api/jobs", self.list_active_jobs),
            web.get("/api/jobs/history", self.list_history),
            web.get("/api/jobs/{job_id}", self.get_job),
            web.get("/api/jobs/{job_id}/logs", self.list_job_logs),
            web.post("/api/jobs/{job_id}/cancel", self.cancel_job),
            web.get("/api/alerts", self.list_alerts),
            web.post("/api/alerts/{alert_id}/resolve", self.resolve_alert),
            web.get("/api/monitoring/overview", self.monitoring_overview),
            web.get("/api/monitoring/{system_id}/health", self.system_health),
        )

    async def health(self, _: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "uptime": round(time.monotonic() - self._started_at, 3),
                "systems": len(self._registry.get_all()),
                "active_jobs": len(self._tracker.active()),
            }
        )

    # Systems ---------------------------------------------------------------

    async def list_systems(self, _: web.Request) -> web.Response:
        systems = [descriptor.to_dict() for descriptor in self._registry.get_all()]
        return web.json_response({"systems": systems, "total": len(systems)})

    async def create_system(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        descriptor = await self._registry.register(data)
        return web.json_response({"system": descriptor.to_dict()}, status=201)

    async def validate_path(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        path = str(data.get("path", "")).strip()
        if not path:
            raise ValidationError("path is required")
        if not Path(path).expanduser().exists():
            raise ValidationError(f"path does not exist: {path}")
        info = await asyncio.to_thread(inspect_path, Path(path).expanduser())
        return web.json_response({"info": info})

    async def discover_systems(self, request: web.Request) -> web.Response:
        seeds = None
        if request.can_read_body:
            data = await self._json_body(request)
            if "seeds" in data:
                if not isinstance(data["seeds"], list):
                    raise ValidationError("seeds must be a list")
                seeds = data["seeds"]
        discovered = await self._registry.discover(seeds)
        return web.json_response(
            {"discovered": [descriptor.to_dict() for descriptor in discovered], "total": len(discovered)}
        )

    async def get_system(self, request: web.Request) -> web.Response:
        descriptor = self._registry.get(request.match_info["system_id"])
        return web.json_response({"system": descriptor.to_dict()})

    async def update_system(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        descriptor = await self._registry.update(request.match_info["system_id"], data)
        return web.json_response({"system": descriptor.to_dict()})

    async def delete_system(self, request: web.Request) -> web.Response:
        removed = await self._registry.remove(request.match_info["system_id"])
        return web.json_response({"removed": removed})

    async def refresh_system(self, request: web.Request) -> web.Response:
        descriptor = await self._registry.refresh(request.match_info["system_id"])
        return web.json_response({"system": descriptor.to_dict()})

    # Build / deploy --------------------------------------------------------

    async def deploy_status(self, request: web.Request) -> web.Response:
        status = await self._runner.deploy_status(request.match_info["system_id"])
        return web.json_response({"status": status})

    async def environments(self, request: web.Request) -> web.Response:
        environments = await self._runner.environments(request.match_info["system_id"])
        return web.json_response({"environments": environments})

    async def start_build(self, request: web.Request) -> web.Response:
        job = await self._runner.start_build(request.match_info["system_id"])
        return web.json_response({"job": job.to_dict()}, status=202)

    async def start_deploy(self, request: web.Request) -> web.Response:
        data = await self._json_body(request, optional=True)
        job = await self._runner.start_deploy(
            request.match_info["system_id"],
            environment=data.get("environment"),
            build_first=_as_bool(data.get("buildFirst", data.get("build_first", True))),
        )
        return web.json_response({"job": job.to_dict()}, status=202)

    async def start_rollback(self, request: web.Request) -> web.Response:
        data = await self._json_body(request)
        job = await self._runner.start_rollback(
            request.match_info["system_id"],
            str(data.get("version") or ""),
            environment=data.get("environment"),
        )
        return web.json_response({"job": job.to_dict()}, status=202)

    async def system_active_jobs(self, request: web.Request) -> web.Response:
        system_id = request.match_info["system_id"]
        self._registry.get(system_id)
        jobs = self._tracker.active(system_id)
        return web.json_response({"jobs": [job.to_dict(include_logs=False) for job in jobs]})

    async def system_history(self, request: web.Request) -> web.Response:
        # History outlives descriptors, so unknown ids simply have no entries.
        jobs = self._tracker.history(request.match_info["system_id"], limit=_limit(request, 20))
        return web.json_response({"jobs": [job.to_dict(include_logs=False) for job in jobs]})

    # Jobs ------------------------------------------------------------------

    async def list_active_jobs(self, _: web.Request) -> web.Response:
        return web.json_response({"jobs": [job.to_dict(include_logs=False) for job in self._tracker.active()]})

    async def list_history(self, request: web.Request) -> web.Response:
        jobs = self._tracker.history(request.query.get("system_id"), limit=_limit(request, 20))
        return web.json_response({"jobs": [job.to_dict(include_logs=False) for job in jobs]})

    async def get_job(self, request: web.Request) -> web.Response:
        return web.json_response({"job": self._find_job(request).to_dict()})

    async def list_job_logs(self, request: web.Request) -> web.Response:
        job = self._find_job(request)
        after_raw = request.query.get("after")
        try:
            after = int(after_raw) if after_raw is not None else 0
        except ValueError as exc:
            raise ValidationError("after must be an integer") from exc
        logs = [entry.to_dict() for entry in job.logs[max(after, 0):]]
        return web.json_response({"job_id": job.id, "status": job.status.value, "logs": logs})

    async def cancel_job(self, request: web.Request) -> web.Response:
        job = self._find_job(request)
        cancelled = self._runner.cancel(job.id)
        return web.json_response({"cancelled": cancelled, "job": job.to_dict(include_logs=False)})

    # Monitoring ------------------------------------------------------------

    async def list_alerts(self, request: web.Request) -> web.Response:
        if self._monitor is None:
            return web.json_response({"alerts": []})
        resolved = request.query.get("resolved")
        alerts = self._monitor.alerts(
            request.query.get("system_id"),
            limit=_limit(request, 50),
            resolved=None if resolved is None else _as_bool(resolved),
        )
        return web.json_response({"alerts": [alert.to_dict() for alert in alerts]})

    async def resolve_alert(self, request: web.Request) -> web.Response:
        alert = self._require_monitor().resolve_alert(request.match_info["alert_id"])
        return web.json_response({"alert": alert.to_dict()})

    async def monitoring_overview(self, _: web.Request) -> web.Response:
        overview = await self._require_monitor().overview()
        return web.json_response({"overview": overview})

    async def system_health(self, request: web.Request) -> web.Response:
        health = await self._require_monitor().system_health(request.match_info["system_id"])
        return web.json_response({"health": health})

    # Helpers ---------------------------------------------------------------

    def _require_monitor(self) -> HealthMonitor:
        if self._monitor is None:
            raise NotFoundError("health monitoring is not enabled")
        return self._monitor

    def _find_job(self, request: web.Request) -> Job:
        job_id = request.match_info["job_id"]
        job = self._tracker.get(job_id)
        if job is None:
            raise NotFoundError(f"job '{job_id}' not found")
        return job

    async def _json_body(self, request: web.Request, *, optional: bool = False) -> dict[str, Any]:
        if optional and not request.can_read_body:
            return {}
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("invalid json") from None
        if not isinstance(data, dict):
            raise ValidationError("JSON object expected")
        return data


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _limit(request: web.Request, default: int) -> int:
    try:
        return min(int(request.query.get("limit", default)), 1000)
    except ValueError as exc:
        raise ValidationError("limit must be an integer") from exc


def create_app(
    registry: Registry,
    runner: Runner,
    tracker: JobTracker,
    monitor: HealthMonitor | None = None,
) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app.add_routes(ApiHandler(registry, runner, tracker, monitor).routes())
    return app

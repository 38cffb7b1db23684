"""Build/deploy runner.

Each accepted request becomes a ``Job`` that is supervised by a background
task: the runner never blocks on the external command. Job mutation is
owned here; the tracker only moves finished jobs into history.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .analyzer import BUILD_DIRS, analyze, read_deploy_targets
from .commands import PRODUCTION, CommandTemplates
from .errors import NotFoundError, ProcessSpawnError, ValidationError
from .models import Job, JobStatus, JobType, SystemDescriptor
from .process import ProcessHandle, Spawner, spawn_shell
from .registry import Registry
from .tracker import JobTracker

LOGGER = logging.getLogger(__name__)


class Runner:
    def __init__(
        self,
        registry: Registry,
        tracker: JobTracker,
        *,
        templates: CommandTemplates | None = None,
        spawner: Spawner = spawn_shell,
        env: dict[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._templates = templates or CommandTemplates()
        self._spawner = spawner
        self._env = env
        self._tasks: dict[str, asyncio.Task] = {}
        self._processes: dict[str, ProcessHandle] = {}

    @property
    def templates(self) -> CommandTemplates:
        return self._templates

    # Job submission --------------------------------------------------------

    async def start_build(self, system_id: str) -> Job:
        descriptor = self._registry.get(system_id)
        return self._submit_build(descriptor)

    async def start_deploy(
        self,
        system_id: str,
        environment: str | None = PRODUCTION,
        build_first: bool = True,
    ) -> Job:
        descriptor = self._registry.get(system_id)
        return self._submit_deploy(descriptor, _environment(environment), build_first)

    async def start_rollback(self, system_id: str, version: str, environment: str | None = PRODUCTION) -> Job:
        descriptor = self._registry.get(system_id)
        version = str(version or "").strip()
        if not version:
            raise ValidationError("version is required for rollback")
        return self._submit_deploy(descriptor, _environment(environment), False, version=version)

    def cancel(self, job_id: str) -> bool:
        job = self._tracker.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False
        self._log(job, "info", "Cancellation requested")
        job.finish(JobStatus.CANCELLED, error="cancelled by user")
        handle = self._processes.pop(job_id, None)
        if handle is not None:
            handle.kill()
        if job.build_job_id:
            self.cancel(job.build_job_id)
        self._tracker.finish(job)
        return True

    async def wait(self, job_id: str) -> Job:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        job = self._tracker.get(job_id)
        if job is None:
            raise NotFoundError(f"job '{job_id}' not found")
        return job

    async def shutdown(self) -> None:
        running = [job.id for job in self._tracker.active()]
        for job_id in running:
            self.cancel(job_id)
        tasks = list(self._tasks.values())
        if tasks:
            LOGGER.info("Waiting for %d job task(s) to stop", len(tasks))
            await asyncio.wait(tasks)

    # Status queries --------------------------------------------------------

    async def deploy_status(self, system_id: str) -> dict[str, Any]:
        descriptor = self._registry.get(system_id)
        analysis = await asyncio.to_thread(analyze, descriptor.path)
        status: dict[str, Any] = {
            "system_id": system_id,
            "can_build": analysis.structure.get("has_manifest", False),
            "can_deploy": analysis.deploy_capable,
            "last_build": None,
            "last_deploy": None,
            "build_status": "unknown",
            "deploy_status": "ready" if analysis.deploy_capable else "unknown",
            "environments": analysis.environments,
            "active_jobs": [job.id for job in self._tracker.active(system_id)],
        }
        if status["can_build"] and analysis.built:
            status["build_status"] = "ready"
            status["last_build"] = _build_output_mtime(Path(descriptor.path))

        history = self._tracker.history(system_id, limit=self._tracker.history_limit)
        last_deploy = next((job for job in history if job.type == JobType.DEPLOY), None)
        if last_deploy is not None:
            finished = last_deploy.end_time or last_deploy.start_time
            status["last_deploy"] = finished.isoformat()
            status["deploy_status"] = "deployed" if last_deploy.status == JobStatus.COMPLETED else last_deploy.status.value
        return status

    async def environments(self, system_id: str) -> list[dict[str, Any]]:
        descriptor = self._registry.get(system_id)
        targets = await asyncio.to_thread(read_deploy_targets, descriptor.path)
        environments = [
            {"name": "development", "url": "http://localhost:3000", "status": "local"},
            {"name": "staging", "url": None, "status": "unknown"},
            {"name": "production", "url": None, "status": "unknown"},
        ]
        for entry in environments:
            project = targets.get(entry["name"])
            if project:
                entry["url"] = f"https://{project}.web.app"
                entry["status"] = "configured"
        return environments

    # Supervision -----------------------------------------------------------

    def _submit_build(self, descriptor: SystemDescriptor) -> Job:
        job = self._open(Job.create(JobType.BUILD, descriptor.id))
        self._launch(job, self._run_build(job, descriptor))
        return job

    def _submit_deploy(
        self,
        descriptor: SystemDescriptor,
        environment: str,
        build_first: bool,
        *,
        version: str | None = None,
    ) -> Job:
        job = Job.create(
            JobType.DEPLOY,
            descriptor.id,
            environment=environment,
            build_first=build_first,
            version=version,
        )
        self._open(job)
        self._launch(job, self._run_deploy(job, descriptor))
        return job

    def _open(self, job: Job) -> Job:
        job.mark_running()
        self._tracker.start(job)
        return job

    def _launch(self, job: Job, body: Coroutine[Any, Any, bool]) -> None:
        task = asyncio.create_task(self._supervise(job, body), name=job.id)
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

    async def _supervise(self, job: Job, body: Coroutine[Any, Any, bool]) -> None:
        try:
            ok = await body
        except asyncio.CancelledError:
            self._kill(job)
            self._finish(job, JobStatus.CANCELLED, "runner shut down")
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Job %s crashed", job.id)
            self._log(job, "error", f"Unexpected error: {exc}")
            self._finish(job, JobStatus.FAILED, str(exc))
            return
        self._finish(job, JobStatus.COMPLETED if ok else JobStatus.FAILED)

    async def _run_build(self, job: Job, descriptor: SystemDescriptor) -> bool:
        command = self._templates.build_command(descriptor)
        return await self._execute(job, descriptor, command, "Build")

    async def _run_deploy(self, job: Job, descriptor: SystemDescriptor) -> bool:
        environment = job.environment or PRODUCTION
        if job.build_first:
            build_job = self._submit_build(descriptor)
            job.build_job_id = build_job.id
            self._log(job, "info", f"Building before deploy ({build_job.id})")
            await self.wait(build_job.id)
            if job.is_terminal:
                return False
            if build_job.status != JobStatus.COMPLETED:
                message = f"Build {build_job.id} {build_job.status.value}; deploy aborted"
                self._log(job, "error", message)
                job.error = message
                return False

        if job.version:
            command = self._templates.rollback_command(descriptor, job.version, environment)
            label = f"Rollback to {job.version} on {environment}"
        else:
            command = self._templates.deploy_command(descriptor, environment)
            label = f"Deploy to {environment}"
        return await self._execute(job, descriptor, command, label)

    async def _execute(self, job: Job, descriptor: SystemDescriptor, command: str, label: str) -> bool:
        job.command = command
        self._log(job, "info", f"Running: {command}")
        try:
            handle = await self._spawner(command, Path(descriptor.path), self._env)
        except ProcessSpawnError as exc:
            message = f"{label} could not start: {exc}"
            self._log(job, "error", message)
            job.error = message
            return False

        if job.is_terminal:
            handle.kill()
            return False
        self._processes[job.id] = handle

        async def _on_line(level: str, line: str) -> None:
            self._log(job, level, line)

        try:
            await handle.stream(_on_line)
            exit_code = await handle.wait()
        finally:
            self._processes.pop(job.id, None)

        if job.is_terminal:
            return False
        job.exit_code = exit_code
        if exit_code == 0:
            self._log(job, "success", f"{label} completed successfully")
            return True
        message = f"{label} failed with exit code {exit_code}"
        self._log(job, "error", message)
        job.error = message
        return False

    def _finish(self, job: Job, status: JobStatus, error: str | None = None) -> None:
        if job.finish(status, error=error):
            self._tracker.finish(job)

    def _kill(self, job: Job) -> None:
        handle = self._processes.pop(job.id, None)
        if handle is not None:
            handle.kill()

    def _log(self, job: Job, level: str, message: str) -> None:
        entry = job.append_log(level, message)
        if entry is not None:
            self._tracker.log(job, entry)


def _environment(value: str | None) -> str:
    text = str(value or "").strip()
    return text or PRODUCTION


def _build_output_mtime(root: Path) -> str | None:
    for name in BUILD_DIRS:
        candidate = root / name
        if candidate.exists():
            mtime = candidate.stat().st_mtime
            return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()
    return None

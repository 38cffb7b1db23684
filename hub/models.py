"""Fleet hub domain models."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class SystemType(str, Enum):
    """Project kind; selects the build/deploy command templates."""

    REACT = "react"
    REACT_BAAS = "react-backed-by-baas"
    NODE_SERVICE = "node-service"
    FULL_STACK = "full-stack"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "SystemType":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        text = _TYPE_ALIASES.get(text, text)
        return cls(text)


_TYPE_ALIASES = {
    "react-firebase": SystemType.REACT_BAAS.value,
    "node-express": SystemType.NODE_SERVICE.value,
}


class SystemStatus(str, Enum):
    NEEDS_SETUP = "needs_setup"
    INACTIVE = "inactive"
    READY = "ready"
    ACTIVE = "active"
    ERROR = "error"
    MAINTENANCE = "maintenance"


class JobType(str, Enum):
    BUILD = "build"
    DEPLOY = "deploy"


class JobStatus(str, Enum):
    """Job state machine: pending -> running -> completed | failed | cancelled."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass(slots=True)
class SystemDescriptor:
    """Registry record of one managed project."""

    id: str
    name: str
    path: str
    type: SystemType
    status: SystemStatus = SystemStatus.NEEDS_SETUP
    technologies: list[str] = field(default_factory=list)
    description: str = ""
    environment: str = "development"
    version: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    structure: dict[str, bool] = field(default_factory=dict)
    deploy_capable: bool = False
    built: bool = False
    environments: list[str] = field(default_factory=list)
    last_modified: datetime | None = None
    error_message: str | None = None
    registered_at: datetime = field(default_factory=utcnow)
    last_checked: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "type": self.type.value,
            "status": self.status.value,
            "technologies": list(self.technologies),
            "description": self.description,
            "environment": self.environment,
            "version": self.version,
            "dependencies": dict(self.dependencies),
            "structure": dict(self.structure),
            "deploy_capable": self.deploy_capable,
            "built": self.built,
            "environments": list(self.environments),
            "last_modified": _iso(self.last_modified),
            "error_message": self.error_message,
            "registered_at": _iso(self.registered_at),
            "last_checked": _iso(self.last_checked),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SystemDescriptor":
        return cls(
            id=data["id"],
            name=data["name"],
            path=data["path"],
            type=SystemType.parse(data["type"]),
            status=SystemStatus(data.get("status") or SystemStatus.NEEDS_SETUP.value),
            technologies=list(data.get("technologies") or []),
            description=data.get("description") or "",
            environment=data.get("environment") or "development",
            version=data.get("version"),
            dependencies=dict(data.get("dependencies") or {}),
            structure=dict(data.get("structure") or {}),
            deploy_capable=bool(data.get("deploy_capable", False)),
            built=bool(data.get("built", False)),
            environments=list(data.get("environments") or []),
            last_modified=_parse_dt(data.get("last_modified")),
            error_message=data.get("error_message"),
            registered_at=_parse_dt(data.get("registered_at")) or utcnow(),
            last_checked=_parse_dt(data.get("last_checked")) or utcnow(),
        )


@dataclass(slots=True)
class LogEntry:
    seq: int
    timestamp: datetime
    level: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
        }


@dataclass(slots=True)
class Job:
    """One build or deploy invocation."""

    id: str
    system_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    logs: list[LogEntry] = field(default_factory=list)
    environment: str | None = None
    command: str | None = None
    exit_code: int | None = None
    error: str | None = None
    build_first: bool = False
    build_job_id: str | None = None
    version: str | None = None

    @classmethod
    def create(cls, job_type: JobType, system_id: str, **kwargs: Any) -> "Job":
        millis = int(time.time() * 1000)
        job_id = f"{job_type.value}_{system_id}_{millis}_{uuid.uuid4().hex[:6]}"
        return cls(id=job_id, system_id=system_id, type=job_type, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def append_log(self, level: str, message: str) -> LogEntry | None:
        # Terminal jobs are sealed.
        if self.is_terminal:
            return None
        entry = LogEntry(seq=len(self.logs) + 1, timestamp=utcnow(), level=level, message=message)
        self.logs.append(entry)
        return entry

    def mark_running(self) -> None:
        if self.status == JobStatus.PENDING:
            self.status = JobStatus.RUNNING

    def finish(self, status: JobStatus, *, error: str | None = None) -> bool:
        if self.is_terminal or not status.is_terminal:
            return False
        self.status = status
        self.end_time = utcnow()
        if error is not None:
            self.error = error
        return True

    def to_dict(self, *, include_logs: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "system_id": self.system_id,
            "type": self.type.value,
            "status": self.status.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "environment": self.environment,
            "command": self.command,
            "exit_code": self.exit_code,
            "error": self.error,
            "build_first": self.build_first,
            "build_job_id": self.build_job_id,
            "version": self.version,
            "log_count": len(self.logs),
        }
        if include_logs:
            payload["logs"] = [entry.to_dict() for entry in self.logs]
        return payload


@dataclass(slots=True)
class Alert:
    system_id: str
    level: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    resolved: bool = False
    resolved_at: datetime | None = None

    def resolve(self) -> bool:
        if self.resolved:
            return False
        self.resolved = True
        self.resolved_at = utcnow()
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "system_id": self.system_id,
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at),
        }

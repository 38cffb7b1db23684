"""Fleet hub: registry, analysis, build/deploy runner and live events for a fleet of web projects."""

from .broadcaster import Broadcaster, Event
from .errors import (
    AnalysisError,
    DuplicateError,
    HubError,
    NotFoundError,
    PersistenceError,
    ProcessSpawnError,
    ValidationError,
)
from .models import Job, JobStatus, JobType, SystemDescriptor, SystemStatus, SystemType
from .registry import Registry
from .runner import Runner
from .tracker import JobTracker

__all__ = [
    "AnalysisError",
    "Broadcaster",
    "DuplicateError",
    "Event",
    "HubError",
    "Job",
    "JobStatus",
    "JobTracker",
    "JobType",
    "NotFoundError",
    "PersistenceError",
    "ProcessSpawnError",
    "Registry",
    "Runner",
    "SystemDescriptor",
    "SystemStatus",
    "SystemType",
    "ValidationError",
]

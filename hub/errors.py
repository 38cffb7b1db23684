"""Fleet hub error taxonomy."""

from __future__ import annotations


class HubError(RuntimeError):
    """Base class for errors surfaced to hub callers."""

    kind = "internal"
    http_status = 500

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": str(self)}


class ValidationError(HubError):
    """Missing or malformed required fields."""

    kind = "validation"
    http_status = 400


class DuplicateError(HubError):
    """Id or path collision on register/update."""

    kind = "duplicate"
    http_status = 409


class NotFoundError(HubError):
    """Unknown system, job or alert id."""

    kind = "not_found"
    http_status = 404


class AnalysisError(HubError):
    """Filesystem read failure while analyzing a project."""

    kind = "analysis"


class ProcessSpawnError(HubError):
    """External build/deploy command could not start."""

    kind = "spawn"


class PersistenceError(HubError):
    """Descriptor store write failure."""

    kind = "persistence"

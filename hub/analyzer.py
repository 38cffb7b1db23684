"""Project directory inspection.

``analyze`` classifies a directory into descriptor fields. It only reads the
filesystem and never raises: unreadable projects come back with
``status == error`` and the reason in ``error_message``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import AnalysisError
from .models import SystemStatus, SystemType

LOGGER = logging.getLogger(__name__)

MANIFEST = "package.json"
DEPLOY_CONFIG = "firebase.json"
DEPLOY_TARGETS = ".firebaserc"
DEPENDENCY_DIR = "node_modules"
BUILD_DIRS = ("build", "dist")

TECHNOLOGY_MAP: tuple[tuple[tuple[str, ...], str], ...] = (
    (("react",), "React"),
    (("firebase", "firebase-admin"), "Firebase"),
    (("express",), "Express"),
    (("mysql2",), "MySQL"),
    (("typescript",), "TypeScript"),
    (("@mui/material",), "Material-UI"),
    (("axios",), "Axios"),
)


@dataclass(slots=True)
class Analysis:
    status: SystemStatus
    technologies: list[str] = field(default_factory=list)
    version: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    structure: dict[str, bool] = field(default_factory=dict)
    deploy_capable: bool = False
    built: bool = False
    environments: list[str] = field(default_factory=list)
    last_modified: datetime | None = None
    error_message: str | None = None

    def fields(self) -> dict[str, Any]:
        """Descriptor fields to merge into a registry record."""
        return {
            "status": self.status,
            "technologies": list(self.technologies),
            "version": self.version,
            "dependencies": dict(self.dependencies),
            "structure": dict(self.structure),
            "deploy_capable": self.deploy_capable,
            "built": self.built,
            "environments": list(self.environments),
            "last_modified": self.last_modified,
            "error_message": self.error_message,
        }


def analyze(path: str | Path) -> Analysis:
    root = Path(path)
    if not root.exists():
        return Analysis(status=SystemStatus.ERROR, error_message=f"path does not exist: {root}")
    try:
        return _analyze_existing(root)
    except AnalysisError as exc:
        LOGGER.warning("Analysis of %s failed: %s", root, exc)
        return Analysis(status=SystemStatus.ERROR, error_message=str(exc))


def _analyze_existing(root: Path) -> Analysis:
    try:
        entries = {entry.name for entry in root.iterdir()}
        mtime = root.stat().st_mtime
    except OSError as exc:
        raise AnalysisError(f"cannot read {root}: {exc}") from exc

    structure = {
        "has_manifest": MANIFEST in entries,
        "has_src": "src" in entries,
        "has_public": "public" in entries,
        "has_build": any(name in entries for name in BUILD_DIRS),
        "has_dependencies": DEPENDENCY_DIR in entries,
        "has_deploy_config": DEPLOY_CONFIG in entries,
        "has_git_repo": ".git" in entries,
    }
    analysis = Analysis(
        status=SystemStatus.NEEDS_SETUP,
        structure=structure,
        deploy_capable=structure["has_deploy_config"],
        built=structure["has_build"],
        last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
    )

    if structure["has_manifest"]:
        manifest = _read_json(root / MANIFEST)
        analysis.version = str(manifest.get("version") or "1.0.0")
        analysis.dependencies = {str(k): str(v) for k, v in (manifest.get("dependencies") or {}).items()}
        analysis.technologies = detect_technologies(manifest)

    if structure["has_deploy_config"] and DEPLOY_TARGETS in entries:
        targets = _read_json(root / DEPLOY_TARGETS)
        analysis.environments = sorted((targets.get("projects") or {}).keys())

    analysis.status = classify(structure)
    return analysis


def classify(structure: dict[str, bool]) -> SystemStatus:
    if not structure.get("has_manifest"):
        return SystemStatus.NEEDS_SETUP
    if not structure.get("has_dependencies"):
        return SystemStatus.NEEDS_SETUP
    # Without src/ the manifest directory is the source root.
    return SystemStatus.READY


def all_dependencies(manifest: dict[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        section = manifest.get(key)
        if isinstance(section, dict):
            merged.update(section)
    return merged


def detect_technologies(manifest: dict[str, Any]) -> list[str]:
    declared = all_dependencies(manifest)
    return [tag for names, tag in TECHNOLOGY_MAP if any(name in declared for name in names)]


def suggest_type(path: str | Path, technologies: list[str]) -> SystemType:
    root = Path(path)
    suggested = SystemType.OTHER
    if "React" in technologies:
        suggested = SystemType.REACT
    if "Express" in technologies:
        suggested = SystemType.NODE_SERVICE
    if "Firebase" in technologies:
        suggested = SystemType.REACT_BAAS
    has_backend = (root / "backend").exists() or (root / "server").exists()
    if (root / "src").exists() and has_backend:
        suggested = SystemType.FULL_STACK
    return suggested


def inspect_path(path: str | Path) -> dict[str, Any]:
    """Pre-fill data for a candidate path without registering it."""
    root = Path(path)
    analysis = analyze(root)
    deploy_project = read_deploy_targets(root).get("default") if analysis.deploy_capable else None
    return {
        "path": str(root),
        "exists": root.exists(),
        "has_manifest": analysis.structure.get("has_manifest", False),
        "deploy_capable": analysis.deploy_capable,
        "suggested_type": suggest_type(root, analysis.technologies).value,
        "technologies": analysis.technologies,
        "deploy_project": deploy_project,
        "status": analysis.status.value,
        "error_message": analysis.error_message,
    }


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise AnalysisError(f"cannot read {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise AnalysisError(f"{path.name} must contain a JSON object")
    return data


def read_deploy_targets(path: str | Path) -> dict[str, str]:
    """Map of deploy target name to hosting project id, from ``.firebaserc``."""
    target_file = Path(path) / DEPLOY_TARGETS
    if not target_file.exists():
        return {}
    try:
        projects = _read_json(target_file).get("projects") or {}
    except AnalysisError as exc:
        LOGGER.warning("Cannot read deploy targets in %s: %s", path, exc)
        return {}
    return {str(name): str(project) for name, project in projects.items()}

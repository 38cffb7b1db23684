"""Build/deploy command templates keyed by system type.

Templates are ``str.format`` patterns. Available fields: ``environment``
(deploy) and ``version`` (rollback), both shell-quoted before substitution.
"""

from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import SystemDescriptor, SystemType

LOGGER = logging.getLogger(__name__)

PRODUCTION = "production"

DEFAULT_BUILD: dict[SystemType, str] = {
    SystemType.REACT: "npm run build",
    SystemType.REACT_BAAS: "npm run build",
    SystemType.NODE_SERVICE: 'npm run build || echo "No build script defined"',
    SystemType.FULL_STACK: "npm run build",
    SystemType.OTHER: "npm run build",
}

DEFAULT_DEPLOY: dict[SystemType, str] = {
    SystemType.REACT: 'echo "Deploy command not configured"',
    SystemType.REACT_BAAS: "firebase deploy --only hosting:{environment}",
    SystemType.NODE_SERVICE: 'npm run deploy || echo "No deploy script defined"',
    SystemType.FULL_STACK: "npm run deploy",
    SystemType.OTHER: 'echo "Deploy command not configured"',
}

# Production BaaS deploys publish every target.
DEFAULT_PRODUCTION_DEPLOY: dict[SystemType, str] = {
    SystemType.REACT_BAAS: "firebase deploy",
}

DEFAULT_ROLLBACK = "git checkout {version}"


@dataclass
class CommandTemplates:
    build: dict[SystemType, str] = field(default_factory=lambda: dict(DEFAULT_BUILD))
    deploy: dict[SystemType, str] = field(default_factory=lambda: dict(DEFAULT_DEPLOY))
    production_deploy: dict[SystemType, str] = field(default_factory=lambda: dict(DEFAULT_PRODUCTION_DEPLOY))
    rollback: str = DEFAULT_ROLLBACK

    def build_command(self, descriptor: SystemDescriptor) -> str:
        return self.build.get(descriptor.type, DEFAULT_BUILD[SystemType.OTHER])

    def deploy_command(self, descriptor: SystemDescriptor, environment: str) -> str:
        template = None
        if environment == PRODUCTION:
            template = self.production_deploy.get(descriptor.type)
        if template is None:
            template = self.deploy.get(descriptor.type, DEFAULT_DEPLOY[SystemType.OTHER])
        return template.format(environment=shlex.quote(environment))

    def rollback_command(self, descriptor: SystemDescriptor, version: str, environment: str) -> str:
        checkout = self.rollback.format(version=shlex.quote(version))
        return f"{checkout} && {self.deploy_command(descriptor, environment)}"

    def apply_overrides(self, overrides: dict[str, Any]) -> None:
        """Merge ``{"build": {type: cmd}, "deploy": {...}, "production_deploy": {...}, "rollback": cmd}``."""
        for section in ("build", "deploy", "production_deploy"):
            entries = overrides.get(section) or {}
            if not isinstance(entries, dict):
                raise ValueError(f"'{section}' overrides must be an object")
            table = getattr(self, section)
            for type_name, command in entries.items():
                table[SystemType.parse(type_name)] = str(command)
        if overrides.get("rollback"):
            self.rollback = str(overrides["rollback"])


def load_templates(path: str | Path | None) -> CommandTemplates:
    templates = CommandTemplates()
    if not path:
        return templates
    overrides = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(overrides, dict):
        raise ValueError(f"command overrides in {path} must be a JSON object")
    templates.apply_overrides(overrides)
    LOGGER.info("Loaded command overrides from %s", path)
    return templates

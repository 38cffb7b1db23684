"""In-memory registry of managed systems backed by the descriptor store."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Protocol

from .analyzer import Analysis, analyze
from .errors import DuplicateError, NotFoundError, PersistenceError, ValidationError
from .models import SystemDescriptor, SystemStatus, SystemType, utcnow
from .storage import DescriptorStore

LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "name", "path", "type")
UPDATABLE_FIELDS = ("name", "path", "type", "status", "description", "environment", "technologies")


class SystemWatcher(Protocol):
    def watch(self, descriptor: SystemDescriptor) -> None: ...

    async def unwatch(self, system_id: str) -> None: ...


class Registry:
    """Single source of truth for system descriptors.

    Mutations of one descriptor are serialized by a per-id lock; descriptors
    are independent, so there is no registry-wide lock. Every mutation
    persists the whole set; a failed write is logged and the in-memory state
    stands until the next successful write.
    """

    def __init__(
        self,
        store: DescriptorStore,
        *,
        analyzer: Callable[[str | Path], Analysis] = analyze,
        seeds: Iterable[dict[str, Any]] | None = None,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._seeds = list(seeds or [])
        self._systems: dict[str, SystemDescriptor] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._reserved_paths: dict[str, str] = {}
        self._watcher: SystemWatcher | None = None

    def attach_watcher(self, watcher: SystemWatcher | None) -> None:
        self._watcher = watcher

    def load(self) -> int:
        for descriptor in self._store.load_all():
            self._systems[descriptor.id] = descriptor
        LOGGER.info("Loaded %d system(s) from the registry store", len(self._systems))
        return len(self._systems)

    # Queries -------------------------------------------------------------

    def find(self, system_id: str) -> SystemDescriptor | None:
        return self._systems.get(system_id)

    def get(self, system_id: str) -> SystemDescriptor:
        descriptor = self._systems.get(system_id)
        if descriptor is None:
            raise NotFoundError(f"system '{system_id}' not found")
        return descriptor

    def get_all(self) -> list[SystemDescriptor]:
        return list(self._systems.values())

    # Mutations -----------------------------------------------------------

    async def register(self, seed: dict[str, Any]) -> SystemDescriptor:
        values = self._validate_seed(seed)
        system_id = values["id"]
        async with self._lock(system_id):
            if system_id in self._systems:
                raise DuplicateError(f"system '{system_id}' is already registered")
            descriptor = SystemDescriptor(
                id=system_id,
                name=values["name"],
                path=values["path"],
                type=values["type"],
                description=str(seed.get("description") or ""),
                environment=str(seed.get("environment") or "development"),
            )
            with self._reserve_path(descriptor.path, system_id):
                analysis = await self._analyze(descriptor.path)
                descriptor = self._merge(descriptor, analysis)
                if not descriptor.technologies and seed.get("technologies"):
                    descriptor.technologies = [str(tag) for tag in seed["technologies"]]
                self._systems[system_id] = descriptor
                self._persist()

        LOGGER.info("Registered system %s (%s) with status %s", system_id, descriptor.path, descriptor.status.value)
        if self._watcher is not None:
            self._watcher.watch(descriptor)
        return descriptor

    async def update(self, system_id: str, fields: dict[str, Any]) -> SystemDescriptor:
        async with self._lock(system_id):
            current = self.get(system_id)
            if "id" in fields and str(fields["id"]) != system_id:
                raise ValidationError("system id cannot be changed")

            updates: dict[str, Any] = {}
            for key in UPDATABLE_FIELDS:
                if key not in fields:
                    continue
                updates[key] = self._coerce_field(key, fields[key])
            updates["last_checked"] = utcnow()
            descriptor = replace(current, **updates)
            if descriptor.path == current.path:
                self._systems[system_id] = descriptor
                self._persist()
            else:
                with self._reserve_path(descriptor.path, system_id):
                    analysis = await self._analyze(descriptor.path)
                    descriptor = self._merge(descriptor, analysis)
                    # Explicit status or technologies in the same update win over the analysis.
                    descriptor = replace(
                        descriptor, **{key: updates[key] for key in ("status", "technologies") if key in updates}
                    )
                    self._systems[system_id] = descriptor
                    self._persist()
        LOGGER.info("Updated system %s: %s", system_id, ", ".join(sorted(k for k in updates if k != "last_checked")))
        if self._watcher is not None and descriptor.path != current.path:
            await self._watcher.unwatch(system_id)
            self._watcher.watch(descriptor)
        return descriptor

    async def remove(self, system_id: str) -> bool:
        async with self._lock(system_id):
            self.get(system_id)
            del self._systems[system_id]
            self._persist()
        self._locks.pop(system_id, None)
        if self._watcher is not None:
            await self._watcher.unwatch(system_id)
        LOGGER.info("Removed system %s", system_id)
        return True

    async def refresh(self, system_id: str) -> SystemDescriptor:
        async with self._lock(system_id):
            current = self.get(system_id)
            analysis = await self._analyze(current.path)
            # The system may have been removed while the analysis ran.
            if system_id not in self._systems:
                raise NotFoundError(f"system '{system_id}' not found")
            descriptor = self._merge(self._systems[system_id], analysis)
            self._systems[system_id] = descriptor
            self._persist()
        LOGGER.debug("Refreshed system %s: %s", system_id, descriptor.status.value)
        return descriptor

    async def discover(self, seeds: Iterable[dict[str, Any]] | None = None) -> list[SystemDescriptor]:
        candidates = list(seeds) if seeds is not None else list(self._seeds)
        LOGGER.info("Discovering systems from %d candidate path(s)", len(candidates))
        discovered: list[SystemDescriptor] = []
        for seed in candidates:
            path = str(seed.get("path") or "").strip()
            if not path or not Path(path).expanduser().exists():
                LOGGER.debug("Skipping missing candidate path %r", path)
                continue
            system_id = str(seed.get("id") or "").strip()
            try:
                if system_id in self._systems:
                    discovered.append(await self.refresh(system_id))
                else:
                    discovered.append(await self.register(seed))
            except (ValidationError, DuplicateError) as exc:
                LOGGER.warning("Skipping candidate %s: %s", path, exc)
        return discovered

    # Helpers -------------------------------------------------------------

    def _lock(self, system_id: str) -> asyncio.Lock:
        lock = self._locks.get(system_id)
        if lock is None:
            lock = self._locks[system_id] = asyncio.Lock()
        return lock

    async def _analyze(self, path: str) -> Analysis:
        return await asyncio.to_thread(self._analyzer, path)

    def _merge(self, descriptor: SystemDescriptor, analysis: Analysis) -> SystemDescriptor:
        return replace(descriptor, **analysis.fields(), last_checked=utcnow())

    def _persist(self) -> None:
        try:
            self._store.save_all(self._systems.values())
        except PersistenceError as exc:
            LOGGER.error("Registry persistence failed, keeping in-memory state: %s", exc)

    def _ensure_unique_path(self, path: str, *, exclude: str | None = None) -> None:
        for other in self._systems.values():
            if other.id != exclude and other.path == path:
                raise DuplicateError(f"path {path} is already registered as '{other.id}'")
        owner = self._reserved_paths.get(path)
        if owner is not None and owner != exclude:
            raise DuplicateError(f"path {path} is being registered as '{owner}'")

    @contextmanager
    def _reserve_path(self, path: str, system_id: str) -> Iterator[None]:
        """Claim ``path`` for ``system_id`` while its analysis is awaited.

        Locks are per id, so two ids registering the same path would
        otherwise both pass the uniqueness check before either is stored.
        """
        self._ensure_unique_path(path, exclude=system_id)
        self._reserved_paths[path] = system_id
        try:
            yield
        finally:
            self._reserved_paths.pop(path, None)

    def _validate_seed(self, seed: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(seed, dict):
            raise ValidationError("system definition must be an object")
        missing = [key for key in REQUIRED_FIELDS if not str(seed.get(key) or "").strip()]
        if missing:
            raise ValidationError(f"required fields missing: {', '.join(missing)}")
        return {
            "id": str(seed["id"]).strip(),
            "name": str(seed["name"]).strip(),
            "path": _normalize_path(seed["path"]),
            "type": _parse_type(seed["type"]),
        }

    def _coerce_field(self, key: str, value: Any) -> Any:
        if key == "type":
            return _parse_type(value)
        if key == "status":
            try:
                return SystemStatus(str(value))
            except ValueError as exc:
                raise ValidationError(f"unknown status '{value}'") from exc
        if key == "path":
            return _normalize_path(value)
        if key == "technologies":
            if not isinstance(value, list):
                raise ValidationError("technologies must be a list")
            return [str(tag) for tag in value]
        text = str(value or "").strip()
        if key == "name" and not text:
            raise ValidationError("name cannot be empty")
        return text


def _parse_type(value: Any) -> SystemType:
    try:
        return SystemType.parse(value)
    except ValueError as exc:
        raise ValidationError(f"unknown system type '{value}'") from exc


def _normalize_path(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError("path cannot be empty")
    path = Path(text).expanduser()
    if not path.is_absolute():
        raise ValidationError(f"path must be absolute: {text}")
    return str(path)

"""Filesystem change watching with per-system debounced refresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
from pathlib import Path

from watchfiles import Change, DefaultFilter, awatch

from .errors import NotFoundError
from .models import SystemDescriptor
from .registry import Registry

LOGGER = logging.getLogger(__name__)

IGNORED_DIRS = (
    "node_modules",
    ".git",
    "build",
    "dist",
    ".cache",
    ".next",
    "coverage",
    "__pycache__",
)

ChangeSet = set[tuple[Change, str]]
WatchSource = Callable[[str, asyncio.Event], AsyncIterator[ChangeSet]]


def is_ignored(path: str | Path, root: str | Path) -> bool:
    try:
        parts = Path(path).relative_to(root).parts
    except ValueError:
        return False
    return any(part in IGNORED_DIRS for part in parts)


def watchfiles_source(path: str, stop_event: asyncio.Event) -> AsyncIterator[ChangeSet]:
    return awatch(path, watch_filter=DefaultFilter(ignore_dirs=IGNORED_DIRS), stop_event=stop_event)


class Debouncer:
    """Trailing-edge debounce: a burst of triggers for one key runs the callback once.

    Each trigger restarts the key's timer; the callback fires ``delay``
    seconds after the last trigger of the burst.
    """

    def __init__(self, delay: float, callback: Callable[[str], Awaitable[object]]) -> None:
        self._delay = delay
        self._callback = callback
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task] = set()

    def trigger(self, key: str) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._delay, self._fire, key)

    def pending(self, key: str) -> bool:
        return key in self._timers

    def cancel(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    async def drain(self) -> None:
        if self._running:
            await asyncio.wait(set(self._running))

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        task = asyncio.create_task(self._run(key))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: str) -> None:
        try:
            await self._callback(key)
        except NotFoundError:
            LOGGER.debug("Debounced callback for %s skipped: system gone", key)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Debounced callback for %s failed", key)


class ChangeWatcher:
    def __init__(
        self,
        registry: Registry,
        *,
        delay: float = 1.0,
        source: WatchSource = watchfiles_source,
    ) -> None:
        self._registry = registry
        self._source = source
        self._debouncer = Debouncer(delay, self._refresh)
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_events: dict[str, asyncio.Event] = {}

    @property
    def watched(self) -> list[str]:
        return sorted(self._tasks)

    def start(self) -> None:
        for descriptor in self._registry.get_all():
            self.watch(descriptor)
        LOGGER.info("Watching %d system(s) for changes", len(self._tasks))

    async def stop(self) -> None:
        for system_id in list(self._tasks):
            await self.unwatch(system_id)
        self._debouncer.cancel_all()
        await self._debouncer.drain()

    def watch(self, descriptor: SystemDescriptor) -> None:
        if descriptor.id in self._tasks:
            return
        if not Path(descriptor.path).is_dir():
            LOGGER.debug("Not watching %s: %s is not a directory", descriptor.id, descriptor.path)
            return
        stop_event = asyncio.Event()
        self._stop_events[descriptor.id] = stop_event
        self._tasks[descriptor.id] = asyncio.create_task(
            self._watch_loop(descriptor.id, descriptor.path, stop_event),
            name=f"watch-{descriptor.id}",
        )

    async def unwatch(self, system_id: str) -> None:
        self._debouncer.cancel(system_id)
        stop_event = self._stop_events.pop(system_id, None)
        if stop_event is not None:
            stop_event.set()
        task = self._tasks.pop(system_id, None)
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _watch_loop(self, system_id: str, path: str, stop_event: asyncio.Event) -> None:
        try:
            async for changes in self._source(path, stop_event):
                if any(not is_ignored(changed, path) for _, changed in changes):
                    LOGGER.debug("Change detected in %s (%d path(s))", system_id, len(changes))
                    self._debouncer.trigger(system_id)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Watcher for %s stopped unexpectedly", system_id)

    async def _refresh(self, system_id: str) -> None:
        descriptor = await self._registry.refresh(system_id)
        LOGGER.info("Re-analyzed %s after file changes: %s", system_id, descriptor.status.value)

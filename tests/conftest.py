from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from hub.broadcaster import Broadcaster
from hub.process import LineCallback, ProcessHandle
from hub.registry import Registry
from hub.runner import Runner
from hub.storage import DescriptorStore
from hub.tracker import JobTracker


class FakeProcess(ProcessHandle):
    """Scripted process: emits ``lines`` then exits with ``exit_code``.

    With ``hold=True`` the process keeps running until ``release()`` or
    ``kill()`` is called.
    """

    def __init__(self, lines: list[tuple[str, str]] | None = None, exit_code: int = 0, hold: bool = False) -> None:
        self.lines = list(lines or [])
        self.exit_code = exit_code
        self.killed = False
        self._released = asyncio.Event()
        if not hold:
            self._released.set()

    def release(self) -> None:
        self._released.set()

    async def stream(self, on_line: LineCallback) -> None:
        for level, line in self.lines:
            await on_line(level, line)
        await self._released.wait()

    async def wait(self) -> int:
        await self._released.wait()
        return -9 if self.killed else self.exit_code

    def kill(self) -> None:
        self.killed = True
        self._released.set()


class FakeSpawner:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.handles: list[FakeProcess] = []
        self.error: Exception | None = None
        self._rules: list[tuple[str, dict[str, Any]]] = []

    def on(self, fragment: str, **kwargs: Any) -> None:
        """Commands containing ``fragment`` get a ``FakeProcess(**kwargs)``."""
        self._rules.append((fragment, kwargs))

    def count(self, fragment: str) -> int:
        return sum(1 for command in self.calls if fragment in command)

    async def __call__(self, command: str, cwd: Path, env: dict[str, str] | None = None) -> ProcessHandle:
        self.calls.append(command)
        if self.error is not None:
            raise self.error
        kwargs = next((kw for fragment, kw in self._rules if fragment in command), {})
        handle = FakeProcess(**kwargs)
        self.handles.append(handle)
        return handle


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


def make_project(
    root: Path,
    *,
    manifest: dict[str, Any] | None = None,
    installed: bool = False,
    extra: tuple[str, ...] = (),
) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    if manifest is not None:
        (root / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
    if installed:
        (root / "node_modules").mkdir(exist_ok=True)
    for name in extra:
        (root / name).mkdir(exist_ok=True)
    return root


@pytest.fixture
def store() -> DescriptorStore:
    store = DescriptorStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture
def tracker(broadcaster: Broadcaster) -> JobTracker:
    return JobTracker(broadcaster, history_limit=10)


@pytest.fixture
def registry(store: DescriptorStore) -> Registry:
    return Registry(store)


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def runner(registry: Registry, tracker: JobTracker, spawner: FakeSpawner) -> Runner:
    return Runner(registry, tracker, spawner=spawner)


@pytest.fixture
async def app_system(registry: Registry, tmp_path: Path):
    path = make_project(tmp_path / "app", manifest={"name": "app", "dependencies": {"react": "^18.0.0"}}, installed=True)
    return await registry.register({"id": "app", "name": "App", "path": str(path), "type": "react"})

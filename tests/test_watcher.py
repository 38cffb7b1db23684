import asyncio

from watchfiles import Change

from conftest import make_project, wait_for
from hub.models import SystemStatus
from hub.watcher import ChangeWatcher, Debouncer, is_ignored


class QueueSource:
    """Watch source fed by the test instead of the filesystem."""

    def __init__(self):
        self.queues = {}

    def __call__(self, path, stop_event):
        queue = self.queues.setdefault(path, asyncio.Queue())

        async def _iterate():
            while not stop_event.is_set():
                yield await queue.get()

        return _iterate()

    def push(self, path, *changed):
        self.queues[path].put_nowait({(Change.modified, name) for name in changed})


async def test_debouncer_coalesces_bursts():
    calls = []

    async def _callback(key):
        calls.append(key)

    debouncer = Debouncer(0.05, _callback)
    for _ in range(5):
        debouncer.trigger("app")
        await asyncio.sleep(0.01)
    assert debouncer.pending("app")

    await asyncio.sleep(0.1)
    await debouncer.drain()

    assert calls == ["app"]
    assert not debouncer.pending("app")


async def test_debouncer_keys_are_independent():
    calls = []

    async def _callback(key):
        calls.append(key)

    debouncer = Debouncer(0.02, _callback)
    debouncer.trigger("a")
    debouncer.trigger("b")
    debouncer.cancel("b")
    await asyncio.sleep(0.06)
    await debouncer.drain()

    assert calls == ["a"]


async def test_debouncer_survives_callback_errors(caplog):
    async def _callback(key):
        raise RuntimeError("refresh exploded")

    debouncer = Debouncer(0.01, _callback)
    debouncer.trigger("a")
    await asyncio.sleep(0.03)
    await debouncer.drain()

    assert "Debounced callback for a failed" in caplog.text


def test_is_ignored(tmp_path):
    assert is_ignored(tmp_path / "node_modules" / "react" / "index.js", tmp_path)
    assert is_ignored(tmp_path / ".git" / "HEAD", tmp_path)
    assert not is_ignored(tmp_path / "src" / "App.js", tmp_path)
    assert not is_ignored("/elsewhere/file.js", tmp_path)


async def test_change_triggers_debounced_refresh(registry, tmp_path):
    path = make_project(tmp_path / "demo", manifest={"name": "demo"})
    source = QueueSource()
    watcher = ChangeWatcher(registry, delay=0.02, source=source)
    registry.attach_watcher(watcher)
    descriptor = await registry.register({"id": "demo", "name": "Demo", "path": str(path), "type": "node-service"})
    assert watcher.watched == ["demo"]
    assert descriptor.status == SystemStatus.NEEDS_SETUP

    await wait_for(lambda: str(path) in source.queues)
    (path / "node_modules").mkdir()
    source.push(str(path), str(path / "node_modules"), str(path / "package.json"))

    await wait_for(lambda: registry.get("demo").status == SystemStatus.READY)
    await watcher.stop()
    assert watcher.watched == []


async def test_ignored_changes_do_not_refresh(registry, tmp_path):
    path = make_project(tmp_path / "demo", manifest={"name": "demo"})
    source = QueueSource()
    watcher = ChangeWatcher(registry, delay=0.01, source=source)
    await registry.register({"id": "demo", "name": "Demo", "path": str(path), "type": "node-service"})
    watcher.start()
    checked = registry.get("demo").last_checked

    await wait_for(lambda: str(path) in source.queues)
    source.push(str(path), str(path / "node_modules" / "left-pad" / "index.js"))
    await asyncio.sleep(0.05)

    assert registry.get("demo").last_checked == checked
    await watcher.stop()


async def test_missing_paths_are_not_watched(registry, tmp_path):
    watcher = ChangeWatcher(registry, source=QueueSource())
    registry.attach_watcher(watcher)

    await registry.register({"id": "ghost", "name": "Ghost", "path": str(tmp_path / "nowhere"), "type": "other"})

    assert watcher.watched == []

"""Fleet hub server: HTTP API, live channel and background services."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from contextlib import suppress
from typing import Sequence

from aiohttp import web

from .api import create_app
from .broadcaster import Broadcaster
from .channel import LiveChannel
from .commands import CommandTemplates, load_templates
from .config import HubConfig, parse_args
from .monitor import HealthMonitor
from .registry import Registry
from .runner import Runner
from .storage import DescriptorStore, init_store
from .tracker import JobTracker
from .watcher import ChangeWatcher

LOGGER = logging.getLogger(__name__)


class HubServer:
    """Wires the registry, runner and broadcaster to the HTTP and WebSocket surfaces."""

    def __init__(
        self,
        config: HubConfig,
        store: DescriptorStore,
        *,
        templates: CommandTemplates | None = None,
        seeds: list[dict] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self.broadcaster = Broadcaster()
        self.registry = Registry(store, seeds=seeds)
        self.tracker = JobTracker(self.broadcaster, history_limit=config.history_limit)
        self.runner = Runner(self.registry, self.tracker, templates=templates)
        self.monitor = HealthMonitor(self.registry, self.broadcaster, interval=config.health_interval)
        self.watcher: ChangeWatcher | None = None
        if config.watch:
            self.watcher = ChangeWatcher(self.registry, delay=config.watch_debounce)
            self.registry.attach_watcher(self.watcher)
        self.channel = LiveChannel(self.broadcaster, config.host, config.ws_port)
        self._web_app = create_app(self.registry, self.runner, self.tracker, self.monitor)
        self._web_runner: web.AppRunner | None = None
        self._web_site: web.TCPSite | None = None

    async def start(self) -> None:
        LOGGER.info("Starting fleet hub")
        self.registry.load()
        await self.registry.discover()
        await self.channel.start()
        await self._start_http()
        self.monitor.start()
        if self.watcher is not None:
            self.watcher.start()

    async def stop(self) -> None:
        LOGGER.info("Stopping fleet hub")
        await self.runner.shutdown()
        if self.watcher is not None:
            await self.watcher.stop()
        await self.monitor.stop()
        await self.channel.stop()
        await self._stop_http()

    async def _start_http(self) -> None:
        if self._web_runner is not None:
            return
        http_host = self._config.http_host or self._config.host
        self._web_runner = web.AppRunner(self._web_app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, http_host, self._config.http_port)
        await self._web_site.start()
        LOGGER.info("HTTP API available on http://%s:%s", http_host, self._config.http_port)

    async def _stop_http(self) -> None:
        if self._web_site is not None:
            await self._web_site.stop()
            self._web_site = None
        if self._web_runner is not None:
            await self._web_runner.cleanup()
            self._web_runner = None


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )


async def _run_server(config: HubConfig) -> None:
    templates = load_templates(config.commands_path)
    seeds = config.load_seeds()
    store = init_store(config.db_path)
    server = HubServer(config, store, templates=templates, seeds=seeds)

    stop_event = asyncio.Event()

    def _handle_signal(*_: signal.Signals) -> None:
        LOGGER.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    try:
        await server.start()
        await stop_event.wait()
    finally:
        await server.stop()
        store.close()


def main(argv: Sequence[str] | None = None) -> None:
    config = HubConfig.from_args(parse_args(argv))
    _configure_logging(config.log_level)
    try:
        asyncio.run(_run_server(config))
    except KeyboardInterrupt:
        LOGGER.info("Keyboard interrupt received")


if __name__ == "__main__":
    main(sys.argv[1:])

"""WebSocket live channel: clients join per-system rooms and receive events."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from http import HTTPStatus
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from .broadcaster import GLOBAL_TOPIC, Broadcaster, Subscription, system_topic

LOGGER = logging.getLogger(__name__)


class LiveChannel:
    def __init__(self, broadcaster: Broadcaster, host: str, port: int) -> None:
        self._broadcaster = broadcaster
        self._host = host
        self._port = port
        self._server: Server | None = None
        self._connections: dict[ServerConnection, Subscription] = {}

    @property
    def port(self) -> int:
        if self._server is None:
            return self._port
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return self._port

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        self._server = await serve(
            self._handler,
            self._host,
            self._port,
            process_request=self._process_ws_request,
        )
        LOGGER.info("Live channel listening on ws://%s:%s", self._host, self.port)

    async def stop(self) -> None:
        if self._server is None:
            return
        LOGGER.info("Closing live channel (%d connection(s))", len(self._connections))
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    async def _handler(self, connection: ServerConnection) -> None:
        client_id = str(uuid.uuid4())
        subscription = self._broadcaster.subscribe()
        self._connections[connection] = subscription
        LOGGER.info("Live client %s connected", client_id)

        forwarder = asyncio.create_task(self._forward(connection, subscription))
        try:
            await connection.send(json.dumps({"type": "welcome", "client_id": client_id}))
            async for raw_message in connection:
                reply = self._process_message(subscription, raw_message)
                await connection.send(json.dumps(reply))
        except ConnectionClosed as exc:
            LOGGER.info("Live client %s disconnected (%s)", client_id, exc.rcvd.code if exc.rcvd else "no close frame")
        finally:
            forwarder.cancel()
            with suppress(asyncio.CancelledError):
                await forwarder
            subscription.close()
            self._connections.pop(connection, None)

    async def _forward(self, connection: ServerConnection, subscription: Subscription) -> None:
        try:
            async for event in subscription:
                await connection.send(json.dumps(event.to_dict()))
        except ConnectionClosed:
            LOGGER.debug("Stopped forwarding events to a closed connection")

    def _process_message(self, subscription: Subscription, raw_message: str | bytes) -> dict[str, Any]:
        try:
            payload = json.loads(raw_message)
        except json.JSONDecodeError:
            return {"type": "error", "message": "invalid json"}
        if not isinstance(payload, dict):
            return {"type": "error", "message": "JSON object expected"}

        message_type = payload.get("type")
        if message_type == "join-global":
            subscription.join(GLOBAL_TOPIC)
            return {"type": "joined", "channel": GLOBAL_TOPIC}
        if message_type == "leave-global":
            subscription.leave(GLOBAL_TOPIC)
            return {"type": "left", "channel": GLOBAL_TOPIC}
        if message_type in {"join", "leave"}:
            system_id = str(payload.get("system_id") or "").strip()
            if not system_id:
                return {"type": "error", "message": "system_id is required"}
            topic = system_topic(system_id)
            if message_type == "join":
                subscription.join(topic)
                LOGGER.debug("Live client joined %s", topic)
                return {"type": "joined", "channel": topic, "system_id": system_id}
            subscription.leave(topic)
            return {"type": "left", "channel": topic, "system_id": system_id}
        return {"type": "error", "message": f"unknown message type {message_type!r}"}

    def _process_ws_request(self, connection: ServerConnection, request: Request) -> Response | None:
        """Answer plain HTTP requests on the WebSocket port with 426."""
        if request.headers.get("Upgrade", "").lower() != "websocket":
            return connection.respond(HTTPStatus.UPGRADE_REQUIRED, "This endpoint expects a WebSocket upgrade.\n")
        return None

"""Prints live build/deploy events from a fleet hub."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Sequence

import websockets

LOGGER = logging.getLogger(__name__)


def join_messages(system_ids: Sequence[str]) -> list[dict[str, str]]:
    """Join requests for ``system_ids``, or the global channel when empty."""
    if not system_ids:
        return [{"type": "join-global"}]
    return [{"type": "join", "system_id": system_id} for system_id in system_ids]


def format_event(message: dict[str, Any]) -> str | None:
    """Render one channel message as a single line; ``None`` hides it."""
    msg_type = message.get("type")
    if msg_type == "welcome":
        return f"[hub] connected (client_id={message.get('client_id')})"
    if msg_type in {"joined", "left"}:
        return None
    if msg_type == "error":
        return f"[hub] error: {message.get('message')}"
    if msg_type != "event":
        return f"[unknown] {message}"

    name = str(message.get("event", ""))
    system_id = message.get("system_id") or "-"
    payload = message.get("payload") or {}
    if name.endswith("-log"):
        return f"[{system_id}] {payload.get('job_id')} {payload.get('level', 'info')}: {payload.get('message', '')}"
    if name == "alert":
        return f"[{system_id}] ALERT {payload.get('level')}: {payload.get('message')}"
    if name == "alert-resolved":
        return f"[{system_id}] resolved: {payload.get('message')}"
    job_id = payload.get("id")
    if job_id:
        line = f"[{system_id}] {name} {job_id}"
        if payload.get("error"):
            line += f" ({payload['error']})"
        return line
    return f"[{system_id}] {name}"


async def _receiver(websocket) -> None:
    async for raw_message in websocket:
        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError:
            LOGGER.warning("Could not parse message from hub: %s", raw_message)
            continue
        if not isinstance(message, dict):
            continue
        line = format_event(message)
        if line is not None:
            print(line, flush=True)


async def _run_client(host: str, port: int, system_ids: Sequence[str]) -> None:
    uri = f"ws://{host}:{port}"
    LOGGER.info("Connecting to %s", uri)
    async with websockets.connect(uri) as websocket:
        for message in join_messages(system_ids):
            await websocket.send(json.dumps(message))
        await _receiver(websocket)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow fleet hub events")
    parser.add_argument("systems", nargs="*", help="System ids to follow (default: every system)")
    parser.add_argument("--host", default="127.0.0.1", help="Hub host")
    parser.add_argument("--port", type=int, default=8765, help="Hub live channel port")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(asctime)s] %(levelname)s: %(message)s")


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        asyncio.run(_run_client(args.host, args.port, args.systems))
    except KeyboardInterrupt:
        LOGGER.info("Feed stopped")


if __name__ == "__main__":
    main(sys.argv[1:])
